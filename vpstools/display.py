"""Presentation lookups and a rich fleet overview.

Labels and styles live here, keyed by the domain enums, so core modules
never carry display concerns. Nothing in the core imports this module.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Final

from rich.console import RenderableType
from rich.table import Table
from rich.text import Text

from vpstools.api.model import ConnectionTestResult, VPSInstance
from vpstools.compiler.model import ClientAppType, ClientConfigFormat, ProtocolType
from vpstools.constants import ServiceStatus, ServiceType

PROTOCOL_LABELS: Final = {
    ProtocolType.SHADOWSOCKS: "Shadowsocks",
    ProtocolType.VMESS: "VMess",
    ProtocolType.VLESS: "VLESS",
    ProtocolType.TROJAN: "Trojan",
    ProtocolType.HYSTERIA: "Hysteria",
    ProtocolType.HYSTERIA2: "Hysteria2",
    ProtocolType.TUIC: "TUIC",
    ProtocolType.NAIVE: "NaiveProxy",
    ProtocolType.SHADOWTLS: "ShadowTLS",
}

FORMAT_LABELS: Final = {
    ClientConfigFormat.SING_BOX: "sing-box",
    ClientConfigFormat.CLASH: "Clash",
    ClientConfigFormat.V2RAY: "V2Ray",
    ClientConfigFormat.URI_BUNDLE: "Share links",
}

APP_LABELS: Final = {
    ClientAppType.CLASH: "Clash",
    ClientAppType.CLASH_FOR_WINDOWS: "Clash for Windows",
    ClientAppType.CLASHX: "ClashX",
    ClientAppType.STASH: "Stash",
    ClientAppType.SING_BOX: "sing-box",
    ClientAppType.HIDDIFY: "Hiddify",
    ClientAppType.V2RAYNG: "V2rayNG",
    ClientAppType.V2RAYU: "V2rayU",
    ClientAppType.SHADOWROCKET: "Shadowrocket",
    ClientAppType.QUANTUMULT_X: "Quantumult X",
    ClientAppType.SURGE: "Surge",
    ClientAppType.LOON: "Loon",
}

SERVICE_LABELS: Final = {
    ServiceType.SINGBOX: "sing-box",
    ServiceType.XRAY: "Xray",
    ServiceType.SHADOWSOCKS: "Shadowsocks",
    ServiceType.V2RAY: "V2Ray",
    ServiceType.WIREGUARD: "WireGuard",
    ServiceType.HYSTERIA: "Hysteria",
    ServiceType.TROJAN: "Trojan",
    ServiceType.FRP: "FRP",
    ServiceType.NGINX: "Nginx",
    ServiceType.DOCKER: "Docker",
    ServiceType.CUSTOM: "Custom",
}

# (label, rich style)
STATUS_STYLES: Final = {
    ServiceStatus.RUNNING: ("running", "green"),
    ServiceStatus.STOPPED: ("stopped", "yellow"),
    ServiceStatus.ERROR: ("error", "red"),
    ServiceStatus.UNKNOWN: ("unknown", "dim"),
}


def format_bytes(n: int) -> str:
    value = float(n)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1024 or unit == "TB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def format_uptime(uptime: timedelta) -> str:
    total = int(uptime.total_seconds())
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _status_text(result: ConnectionTestResult | None, testing: bool) -> Text:
    if testing:
        return Text("testing", style="cyan")
    if result is None:
        return Text("untested", style="dim")
    if result.is_connected:
        latency = f" {result.ping_latency * 1000:.0f}ms" if result.ping_latency is not None else ""
        return Text(f"online{latency}", style="green")
    if result.ping_success:
        return Text("auth failed", style="yellow")
    return Text("offline", style="red")


def fleet_table(
    instances: list[VPSInstance],
    results: dict[str, ConnectionTestResult],
    testing: frozenset[str] = frozenset(),
) -> RenderableType:
    """One row per instance: identity, probe status and cached telemetry."""
    table = Table(title="Fleet", header_style="bold")
    table.add_column("Name")
    table.add_column("Endpoint", style="cyan")
    table.add_column("Group", style="dim")
    table.add_column("Status")
    table.add_column("OS")
    table.add_column("CPU", justify="right")
    table.add_column("Mem", justify="right")
    table.add_column("Disk", justify="right")
    table.add_column("Uptime", justify="right")
    table.add_column("Services")

    for vps in instances:
        info = vps.system_info
        services = Text()
        for i, service in enumerate(vps.services):
            _, style = STATUS_STYLES[service.status]
            if i:
                services.append(", ", style="dim")
            services.append(service.display_name or SERVICE_LABELS[service.type], style=style)
        table.add_row(
            vps.display_name,
            vps.connection_string,
            vps.group,
            _status_text(results.get(vps.id), vps.id in testing),
            info.os_name if info else "-",
            str(info.cpu_cores) if info else "-",
            f"{info.memory_usage:.0f}% of {format_bytes(info.memory_total)}" if info else "-",
            f"{info.disk_usage:.0f}% of {format_bytes(info.disk_total)}" if info else "-",
            format_uptime(info.uptime) if info else "-",
            services,
        )
    return table
