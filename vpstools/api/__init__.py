"""Fleet data model: instances, credentials, telemetry and admission drafts."""

from vpstools.api.draft import InstancePatch, VPSDraft
from vpstools.api.model import (
    ConnectionTestResult,
    Credential,
    KeyAuth,
    MetricsSample,
    PasswordAuth,
    SystemInfo,
    VPSInstance,
    VPSService,
)

__all__ = [
    "ConnectionTestResult",
    "Credential",
    "InstancePatch",
    "KeyAuth",
    "MetricsSample",
    "PasswordAuth",
    "SystemInfo",
    "VPSDraft",
    "VPSInstance",
    "VPSService",
]
