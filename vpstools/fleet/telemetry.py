"""Remote system introspection over an authenticated session.

The collector runs a fixed battery of shell queries and parses each one.
Any failed or unparseable query aborts the whole collection with a
CollectionError; a partially filled SystemInfo is never returned.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

from loguru import logger

from vpstools.api.model import MetricsSample, SystemInfo, utcnow
from vpstools.constants import (
    CMD_CPU_CORES,
    CMD_CPU_MODEL,
    CMD_CPU_STAT,
    CMD_DISK,
    CMD_KERNEL,
    CMD_LOADAVG,
    CMD_MEMORY,
    CMD_NET_DEV,
    CMD_OS_RELEASE,
    CMD_UPTIME,
    COMMAND_TIMEOUT,
)
from vpstools.core.exceptions import CollectionError
from vpstools.infra.protocols import RemoteSession

# =============================================================================
# Parsers
# =============================================================================


def parse_os_release(output: str) -> tuple[str, str]:
    """Return (pretty_name, version_id) from /etc/os-release."""
    fields: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep:
            fields[key] = value.strip().strip("\"'")
    name = fields.get("PRETTY_NAME") or fields.get("NAME")
    if not name:
        raise ValueError("no PRETTY_NAME or NAME entry")
    return name, fields.get("VERSION_ID", "")


def parse_single_line(output: str) -> str:
    value = output.strip()
    if not value:
        raise ValueError("empty output")
    return value.splitlines()[0].strip()


# Keys that name the CPU, in order of preference. x86 kernels write
# "model name"; ARM kernels write "Hardware"/"Processor" or only the
# implementer and part ids.
_CPU_NAME_KEYS = ("model name", "hardware", "processor", "uarch", "cpu model")

_ARM_IMPLEMENTERS = {"0x41": "ARM", "0x61": "Apple", "0xc0": "Ampere"}
_ARM_PARTS = {
    ("0x41", "0xd08"): "Cortex-A72",
    ("0x41", "0xd0c"): "Neoverse-N1",
    ("0x41", "0xd40"): "Neoverse-V1",
    ("0x41", "0xd49"): "Neoverse-N2",
    ("0x41", "0xd4f"): "Neoverse-V2",
    ("0xc0", "0xac3"): "Ampere-1",
}


def parse_cpu_model(output: str) -> str:
    """CPU name from ``/proc/cpuinfo``.

    Falls back to the ARM implementer/part ids when no name line exists.
    """
    fields: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        key, value = key.strip().lower(), " ".join(value.split())
        # "processor" is also the numeric cpu index line.
        if sep and value and not (key == "processor" and value.isdigit()):
            fields.setdefault(key, value)

    for key in _CPU_NAME_KEYS:
        if key in fields:
            return fields[key]

    implementer, part = fields.get("cpu implementer"), fields.get("cpu part")
    if implementer and part:
        vendor = _ARM_IMPLEMENTERS.get(implementer, f"implementer {implementer}")
        return f"{vendor} {_ARM_PARTS.get((implementer, part), f'part {part}')}"
    raise ValueError(f"no CPU name in cpuinfo: {output.strip()[:80]!r}")


def parse_cpu_cores(output: str) -> int:
    cores = int(parse_single_line(output))
    if cores <= 0:
        raise ValueError(f"non-positive core count {cores}")
    return cores


def parse_memory(output: str) -> tuple[int, int]:
    """Return (total, available) bytes from ``free -b``."""
    for line in output.splitlines():
        if line.startswith("Mem:"):
            cols = line.split()
            total = int(cols[1])
            # Old procps has no "available" column; fall back to "free".
            available = int(cols[6]) if len(cols) >= 7 else int(cols[3])
            return total, available
    raise ValueError("no 'Mem:' row")


def parse_disk(output: str) -> tuple[int, int]:
    """Return (total, available) bytes from ``df -B1 /``."""
    lines = output.strip().splitlines()
    if len(lines) < 2:
        raise ValueError("missing data row")
    # Long device names wrap onto their own line.
    cols = " ".join(lines[1:]).split()
    if len(cols) < 4:
        raise ValueError(f"unexpected df row: {cols}")
    return int(cols[1]), int(cols[3])


def parse_uptime(output: str) -> timedelta:
    seconds = float(parse_single_line(output).split()[0])
    if seconds < 0:
        raise ValueError("negative uptime")
    return timedelta(seconds=seconds)


def parse_loadavg(output: str) -> tuple[float, float, float]:
    parts = parse_single_line(output).split()
    if len(parts) < 3:
        raise ValueError(f"expected 3 load values, got {parts}")
    one, five, fifteen = (float(p) for p in parts[:3])
    return one, five, fifteen


def parse_cpu_stat(output: str) -> float:
    """Aggregate busy percentage since boot from the ``cpu`` row of /proc/stat."""
    cols = parse_single_line(output).split()
    if not cols or cols[0] != "cpu" or len(cols) < 5:
        raise ValueError(f"unexpected /proc/stat row: {cols}")
    ticks = [int(c) for c in cols[1:]]
    total = sum(ticks)
    idle = ticks[3] + (ticks[4] if len(ticks) > 4 else 0)
    if total <= 0:
        return 0.0
    return round((total - idle) / total * 100, 2)


def parse_net_dev(output: str) -> tuple[int, int]:
    """Return (rx_bytes, tx_bytes) summed over non-loopback interfaces."""
    rx = tx = 0
    seen = False
    for line in output.splitlines()[2:]:
        iface, sep, data = line.partition(":")
        if not sep:
            continue
        seen = True
        if iface.strip() == "lo":
            continue
        cols = data.split()
        rx += int(cols[0])
        tx += int(cols[8])
    if not seen:
        raise ValueError("no interface rows")
    return rx, tx


# =============================================================================
# Collector
# =============================================================================


class TelemetryCollector:
    """Turns an authenticated session into a SystemInfo or MetricsSample."""

    def __init__(self, command_timeout: float = COMMAND_TIMEOUT) -> None:
        self.command_timeout = command_timeout
        self._log = logger.bind(component="telemetry")

    async def collect(self, session: RemoteSession) -> SystemInfo:
        """Run the identity/resource battery.

        Raises:
            CollectionError: If any query fails or does not parse.
        """
        os_name, os_version = await self._query(session, CMD_OS_RELEASE, parse_os_release)
        kernel = await self._query(session, CMD_KERNEL, parse_single_line)
        cpu_model = await self._query(session, CMD_CPU_MODEL, parse_cpu_model)
        cores = await self._query(session, CMD_CPU_CORES, parse_cpu_cores)
        mem_total, mem_available = await self._query(session, CMD_MEMORY, parse_memory)
        disk_total, disk_available = await self._query(session, CMD_DISK, parse_disk)
        uptime = await self._query(session, CMD_UPTIME, parse_uptime)
        load = await self._query(session, CMD_LOADAVG, parse_loadavg)

        try:
            info = SystemInfo(
                os_name=os_name,
                os_version=os_version,
                kernel_version=kernel,
                cpu_model=cpu_model,
                cpu_cores=cores,
                memory_total=mem_total,
                memory_available=mem_available,
                disk_total=disk_total,
                disk_available=disk_available,
                load_average=load,
                uptime=uptime,
            )
        except ValueError as e:
            raise CollectionError("snapshot", str(e)) from e

        self._log.debug("Collected {os} / {cores} cores", os=os_name, cores=cores)
        return info

    async def sample(self, session: RemoteSession) -> MetricsSample:
        """Take one resource sample.

        Raises:
            CollectionError: If any query fails or does not parse.
        """
        cpu = await self._query(session, CMD_CPU_STAT, parse_cpu_stat)
        mem_total, mem_available = await self._query(session, CMD_MEMORY, parse_memory)
        disk_total, disk_available = await self._query(session, CMD_DISK, parse_disk)
        rx, tx = await self._query(session, CMD_NET_DEV, parse_net_dev)
        load = await self._query(session, CMD_LOADAVG, parse_loadavg)

        def pct(total: int, available: int) -> float:
            return round((total - available) / total * 100, 2) if total > 0 else 0.0

        return MetricsSample(
            timestamp=utcnow(),
            cpu_usage=cpu,
            memory_usage=pct(mem_total, mem_available),
            disk_usage=pct(disk_total, disk_available),
            network_in=rx,
            network_out=tx,
            load_average=load,
        )

    async def _query[T](
        self,
        session: RemoteSession,
        command: str,
        parse: Callable[[str], T],
    ) -> T:
        try:
            code, stdout, stderr = await session.run(command, timeout=self.command_timeout)
        except TimeoutError as e:
            raise CollectionError(command, f"timed out after {self.command_timeout}s") from e
        except Exception as e:
            raise CollectionError(command, f"{type(e).__name__}: {e}") from e

        if code != 0:
            raise CollectionError(command, f"exit {code}: {stderr.strip()}")

        try:
            return parse(stdout)
        except (ValueError, IndexError) as e:
            self._log.warning("Unparseable output for {cmd!r}: {out!r}", cmd=command, out=stdout[:200])
            raise CollectionError(command, f"unparseable output: {e}") from e
