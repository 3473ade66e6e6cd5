"""
Local package for the dbkeeper supervisor.

Holds the configuration, the store client, the external tool wrappers, and
the supervisor itself.
"""
