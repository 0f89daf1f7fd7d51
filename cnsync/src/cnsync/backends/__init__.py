"""
Daemon backend implementations.
"""

from cnsync.backends.base import Daemon, DaemonError
from cnsync.backends.http_daemon import HttpDaemon

__all__ = ["Daemon", "DaemonError", "HttpDaemon"]
