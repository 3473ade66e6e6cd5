"""dbkeeper: supervises a containerized database alongside etcd and WAL-E."""

__version__ = "0.1.0"
