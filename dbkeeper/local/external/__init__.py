"""
External collaborators package.
Wraps the command-line tools the supervisor drives: the template renderer and the backup tool.
"""
from .confd import TemplateRenderer
from .wal_e import BackupTool

__all__ = ['TemplateRenderer', 'BackupTool']
