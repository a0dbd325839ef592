"""Protocol definitions for the I/O seams.

The fleet never talks to asyncssh directly; it asks a SessionFactory for a
RemoteSession. Tests and alternative transports plug in here.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from vpstools.api.model import VPSInstance


@runtime_checkable
class RemoteSession(Protocol):
    """An authenticated session able to run shell commands.

    Usage:
        async with await factory(instance) as session:
            code, stdout, stderr = await session.run("uname", "-r")
    """

    async def run(
        self,
        *command: str,
        timeout: float | None = None,
    ) -> tuple[int, str, str]:
        """Execute command and return (exit_code, stdout, stderr)."""
        ...

    async def close(self) -> None:
        """Release the session."""
        ...

    async def __aenter__(self) -> RemoteSession: ...

    async def __aexit__(self, *_: object) -> None: ...


type SessionFactory = Callable[[VPSInstance], Awaitable[RemoteSession]]
"""Opens an authenticated session to an instance or raises."""


@runtime_checkable
class ExportSink(Protocol):
    """Destination for rendered client artifacts."""

    def write(self, filename: str, content: str) -> str:
        """Store ``content`` under ``filename`` and return its location.

        Raises:
            ExportFailedError: If the sink cannot store the artifact.
        """
        ...
