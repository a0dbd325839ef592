"""I/O seams: session and sink protocols plus the asyncssh transport."""

from vpstools.infra.protocols import ExportSink, RemoteSession, SessionFactory
from vpstools.infra.ssh import SSHSession, ssh_session_factory

__all__ = [
    "ExportSink",
    "RemoteSession",
    "SSHSession",
    "SessionFactory",
    "ssh_session_factory",
]
