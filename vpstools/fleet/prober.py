"""Reachability + authenticated-session probe against one VPS.

probe() never raises to its caller (cancellation excepted): every failure
is encoded in the returned ConnectionTestResult.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass

import asyncssh
from loguru import logger

from vpstools.api.model import ConnectionTestResult, VPSInstance, utcnow
from vpstools.constants import REACHABILITY_TIMEOUT, SESSION_TIMEOUT
from vpstools.infra.protocols import SessionFactory
from vpstools.infra.ssh import ssh_session_factory


@dataclass(frozen=True, slots=True)
class ProbeSettings:
    """Probe timeouts, in seconds."""

    reachability_timeout: float = REACHABILITY_TIMEOUT
    session_timeout: float = SESSION_TIMEOUT
    known_hosts: str | None = None


class ConnectionProber:
    """Two-step probe: TCP reachability, then an SSH login.

    A failed reachability step short-circuits the session step; the result
    then reports ``ssh_success=False`` with an explanatory ``ssh_error``.
    """

    def __init__(
        self,
        settings: ProbeSettings | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.settings = settings or ProbeSettings()
        self.session_factory = session_factory or ssh_session_factory(
            connect_timeout=self.settings.session_timeout,
            known_hosts=self.settings.known_hosts,
        )

    async def probe(self, instance: VPSInstance) -> ConnectionTestResult:
        log = logger.bind(component="prober", instance_id=instance.id)
        started = utcnow()

        reachable, latency, reach_error = await self.check_reachability(
            instance.host, instance.port,
        )
        if not reachable:
            log.info("{target} unreachable: {error}", target=instance.connection_string, error=reach_error)
            return ConnectionTestResult(
                ping_success=False,
                ssh_success=False,
                ssh_error=f"not attempted: host unreachable ({reach_error})",
                timestamp=started,
            )

        ssh_error = await self.check_session(instance)
        if ssh_error is None:
            log.debug("{target} ok in {latency:.3f}s", target=instance.connection_string, latency=latency)
        else:
            log.info("{target} SSH failed: {error}", target=instance.connection_string, error=ssh_error)

        return ConnectionTestResult(
            ping_success=True,
            ssh_success=ssh_error is None,
            ssh_error=ssh_error,
            ping_latency=latency,
            timestamp=started,
        )

    async def check_reachability(
        self, host: str, port: int,
    ) -> tuple[bool, float | None, str | None]:
        """TCP connect bounded by the reachability timeout.

        Returns:
            Tuple of (reachable, latency_seconds, error_text).
        """
        start = time.monotonic()
        try:
            async with asyncio.timeout(self.settings.reachability_timeout):
                _, writer = await asyncio.open_connection(host, port)
        except TimeoutError:
            return False, None, f"timeout after {self.settings.reachability_timeout}s"
        except OSError as e:
            return False, None, e.strerror or str(e) or type(e).__name__

        latency = time.monotonic() - start
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True, latency, None

    async def check_session(self, instance: VPSInstance) -> str | None:
        """Log in and run a no-op command. Returns error text or None."""
        try:
            async with asyncio.timeout(self.settings.session_timeout):
                session = await self.session_factory(instance)
                async with session:
                    code, _, stderr = await session.run("true")
        except TimeoutError:
            return f"SSH session timed out after {self.settings.session_timeout}s"
        except asyncssh.PermissionDenied as e:
            return f"authentication failed: {e.reason}"
        except asyncssh.Error as e:
            return f"SSH error: {e.reason}"
        except OSError as e:
            return f"connection error: {e}"
        except Exception as e:
            # Pluggable factories may raise anything; it becomes result text.
            return f"{type(e).__name__}: {e}"

        if code != 0:
            return f"remote shell exited with {code}: {stderr.strip()}"
        return None
