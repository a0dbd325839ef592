from __future__ import annotations

from collections.abc import Callable

import pytest

from vpstools.api.model import PasswordAuth, VPSInstance

OS_RELEASE = 'PRETTY_NAME="Ubuntu 22.04.4 LTS"\nNAME="Ubuntu"\nVERSION_ID="22.04"\nID=ubuntu\n'
KERNEL = "5.15.0-91-generic\n"
CPUINFO = (
    "processor\t: 0\n"
    "vendor_id\t: GenuineIntel\n"
    "cpu family\t: 6\n"
    "model name\t: Intel(R) Xeon(R) CPU E5-2680 v4 @ 2.40GHz\n"
    "\n"
    "processor\t: 1\n"
    "model name\t: Intel(R) Xeon(R) CPU E5-2680 v4 @ 2.40GHz\n"
)
NPROC = "2\n"
FREE = (
    "               total        used        free      shared  buff/cache   available\n"
    "Mem:      4000000000  1000000000   500000000     1000000  2500000000  3000000000\n"
    "Swap:              0           0           0\n"
)
DF = (
    "Filesystem      1B-blocks        Used   Available Use% Mounted on\n"
    "/dev/vda1     80000000000 20000000000 60000000000  25% /\n"
)
UPTIME = "93784.50 180000.00\n"
LOADAVG = "0.15 0.10 0.05 1/123 4567\n"
PROC_STAT = "cpu  100 0 100 700 100 0 0 0 0 0\n"
NET_DEV = (
    "Inter-|   Receive                                                |  Transmit\n"
    " face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed\n"
    "    lo:    1000      10    0    0    0     0          0         0     1000      10    0    0    0     0       0          0\n"
    "  eth0:    5000      50    0    0    0     0          0         0     3000      30    0    0    0     0       0          0\n"
)

LINUX_OUTPUTS: dict[str, str] = {
    "cat /etc/os-release": OS_RELEASE,
    "uname -r": KERNEL,
    "cat /proc/cpuinfo": CPUINFO,
    "nproc": NPROC,
    "free -b": FREE,
    "df -B1 /": DF,
    "cat /proc/uptime": UPTIME,
    "cat /proc/loadavg": LOADAVG,
    "head -1 /proc/stat": PROC_STAT,
    "cat /proc/net/dev": NET_DEV,
    "true": "",
}


class FakeSession:
    """In-memory RemoteSession. Unknown commands exit 127."""

    def __init__(
        self,
        outputs: dict[str, str] | None = None,
        failures: dict[str, tuple[int, str] | BaseException] | None = None,
    ) -> None:
        self.outputs = dict(LINUX_OUTPUTS if outputs is None else outputs)
        self.failures = failures or {}
        self.commands: list[str] = []
        self.closed = False

    async def run(self, *command: str, timeout: float | None = None) -> tuple[int, str, str]:
        cmd = " ".join(command)
        self.commands.append(cmd)
        match self.failures.get(cmd):
            case BaseException() as exc:
                raise exc
            case (code, stderr):
                return code, "", stderr
        if cmd not in self.outputs:
            return 127, "", f"{cmd}: command not found"
        return 0, self.outputs[cmd], ""

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self) -> FakeSession:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def session_factory() -> Callable[..., object]:
    """Factory that hands out fresh FakeSessions and remembers them."""
    opened: list[FakeSession] = []

    async def open_session(instance: VPSInstance) -> FakeSession:
        session = FakeSession()
        opened.append(session)
        return session

    open_session.opened = opened  # type: ignore[attr-defined]
    return open_session


def _make_instance(
    host: str = "203.0.113.10",
    port: int = 22,
    instance_id: str = "vps-1",
    **kwargs: object,
) -> VPSInstance:
    return VPSInstance(
        id=instance_id,
        name=kwargs.pop("name", instance_id),  # type: ignore[arg-type]
        host=host,
        port=port,
        username="root",
        credential=PasswordAuth("secret"),
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.fixture
def make_instance() -> Callable[..., VPSInstance]:
    return _make_instance
