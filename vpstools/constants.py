"""Centralized constants and enums for vpstools.

All magic strings, remote commands, and tuning constants are defined here
to keep the fleet and compiler modules free of literals.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Service Kinds
# =============================================================================


class ServiceType(StrEnum):
    """Kinds of services the deployment collaborator installs on a VPS."""

    SINGBOX = "sing-box"
    XRAY = "xray"
    SHADOWSOCKS = "shadowsocks"
    V2RAY = "v2ray"
    WIREGUARD = "wireguard"
    HYSTERIA = "hysteria"
    TROJAN = "trojan"
    FRP = "frp"
    NGINX = "nginx"
    DOCKER = "docker"
    CUSTOM = "custom"


class ServiceStatus(StrEnum):
    """Reported state of a service on its VPS."""

    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
    UNKNOWN = "unknown"


# =============================================================================
# Roster Defaults
# =============================================================================

DEFAULT_SSH_PORT: Final = 22
DEFAULT_GROUP: Final = "default"
MAX_NAME_LENGTH: Final = 50
MAX_USERNAME_LENGTH: Final = 32
MAX_GROUP_LENGTH: Final = 30
METRICS_HISTORY_SIZE: Final = 100


# =============================================================================
# Probe Timeouts (in seconds)
# =============================================================================

REACHABILITY_TIMEOUT: Final = 5.0
SESSION_TIMEOUT: Final = 10.0
COMMAND_TIMEOUT: Final = 30.0


# =============================================================================
# Telemetry Commands
# =============================================================================

CMD_OS_RELEASE: Final = "cat /etc/os-release"
CMD_KERNEL: Final = "uname -r"
CMD_CPU_MODEL: Final = "cat /proc/cpuinfo"
CMD_CPU_CORES: Final = "nproc"
CMD_MEMORY: Final = "free -b"
CMD_DISK: Final = "df -B1 /"
CMD_UPTIME: Final = "cat /proc/uptime"
CMD_LOADAVG: Final = "cat /proc/loadavg"
CMD_CPU_STAT: Final = "head -1 /proc/stat"
CMD_NET_DEV: Final = "cat /proc/net/dev"


# =============================================================================
# Client Rendering
# =============================================================================

PRIVATE_CIDRS: Final = (
    "127.0.0.1/32",
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "169.254.0.0/16",
    "::1/128",
    "fc00::/7",
    "fe80::/10",
)

DEFAULT_NAIVE_USER: Final = "user"
HYSTERIA_BANDWIDTH_MBPS: Final = 100
SINGBOX_MIXED_PORT: Final = 2080
CLASH_HTTP_PORT: Final = 7890
CLASH_SOCKS_PORT: Final = 7891
CLASH_CONTROLLER: Final = "127.0.0.1:9090"
V2RAY_SOCKS_PORT: Final = 1080
V2RAY_HTTP_PORT: Final = 1081
