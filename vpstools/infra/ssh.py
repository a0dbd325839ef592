"""AsyncSSH-based session for probes and telemetry.

Service class pattern - connection parameters bound at construction,
not passed on every call.
"""

from __future__ import annotations

import asyncio
import contextlib
import shlex
from dataclasses import dataclass, field

import asyncssh
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from vpstools.api.model import Credential, KeyAuth, PasswordAuth, VPSInstance
from vpstools.constants import SESSION_TIMEOUT


@dataclass
class SSHSession:
    """Async SSH session using asyncssh.

    Holds connection configuration; host, user and credential are bound at
    construction. Retry on transient socket errors is built into connect()
    and disabled by default (one attempt), since probes must report what a
    single attempt sees.

    Example:
        >>> session = SSHSession(host="10.0.0.1", user="root",
        ...                      credential=PasswordAuth("secret"))
        >>> await session.connect()
        >>> code, stdout, stderr = await session.run("uname", "-r")
        >>> await session.close()

    As context manager:
        >>> async with SSHSession(...) as s:
        ...     code, out, err = await s.run("nproc")
    """

    host: str
    user: str
    credential: Credential
    port: int = 22
    connect_timeout: float = SESSION_TIMEOUT
    known_hosts: str | None = None
    retry_max_attempts: int = 1
    retry_delay: float = 2.0

    _conn: asyncssh.SSHClientConnection | None = field(default=None, repr=False)

    async def connect(self) -> None:
        """Establish and authenticate the SSH connection.

        Raises:
            asyncssh.PermissionDenied: Credential rejected.
            asyncssh.Error: Protocol-level failure.
            OSError: Socket-level failure after all attempts.
        """
        if self._conn is not None:
            return

        log = logger.bind(component="ssh", host=self.host)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_max_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        ):
            with attempt:
                log.debug(
                    "Connecting to {target} (attempt {n})",
                    target=f"{self.user}@{self.host}:{self.port}",
                    n=attempt.retry_state.attempt_number,
                )
                self._conn = await asyncssh.connect(
                    self.host,
                    port=self.port,
                    username=self.user,
                    known_hosts=self.known_hosts,
                    connect_timeout=self.connect_timeout,
                    login_timeout=self.connect_timeout,
                    **_auth_options(self.credential),
                )

    async def close(self) -> None:
        """Close SSH connection."""
        if self._conn is not None:
            self._conn.close()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._conn.wait_closed(), timeout=5.0)
            self._conn = None

    async def __aenter__(self) -> SSHSession:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        """Whether connection is established."""
        return self._conn is not None

    def _require_connection(self) -> asyncssh.SSHClientConnection:
        if self._conn is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._conn

    async def run(
        self,
        *command: str,
        timeout: float | None = None,
    ) -> tuple[int, str, str]:
        """Execute command and return (exit_code, stdout, stderr).

        A single argument is passed to the remote shell verbatim so pipes
        work; multiple arguments are quoted individually.

        Raises:
            TimeoutError: If the command exceeds ``timeout``.
        """
        conn = self._require_connection()
        cmd = command[0] if len(command) == 1 else shlex.join(command)

        try:
            result = await conn.run(cmd, timeout=timeout, check=False)
        except asyncssh.TimeoutError as e:
            raise TimeoutError(f"Command timed out after {timeout}s: {cmd}") from e

        code = result.exit_status if result.exit_status is not None else -1
        return code, str(result.stdout or ""), str(result.stderr or "")


def _auth_options(credential: Credential) -> dict[str, object]:
    match credential:
        case PasswordAuth(password=password):
            return {"password": password, "client_keys": None, "agent_path": None}
        case KeyAuth(key_path=key_path, passphrase=passphrase):
            return {"client_keys": [key_path], "passphrase": passphrase, "password": None}


def ssh_session_factory(
    *,
    connect_timeout: float = SESSION_TIMEOUT,
    known_hosts: str | None = None,
):
    """Build a SessionFactory that opens asyncssh sessions.

    Args:
        connect_timeout: Seconds allowed for TCP connect plus login.
        known_hosts: Path to a known_hosts file; None accepts any host key.
    """

    async def open_session(instance: VPSInstance) -> SSHSession:
        session = SSHSession(
            host=instance.host,
            user=instance.username,
            credential=instance.credential,
            port=instance.port,
            connect_timeout=connect_timeout,
            known_hosts=known_hosts,
        )
        await session.connect()
        return session

    return open_session
