"""Fleet coordination: probes, telemetry and the roster.

Example:
    from vpstools.fleet import FleetCoordinator

    coordinator = FleetCoordinator()
    results = await coordinator.test_all_connections()
"""

from vpstools.fleet.coordinator import FleetCoordinator
from vpstools.fleet.prober import ConnectionProber, ProbeSettings
from vpstools.fleet.telemetry import TelemetryCollector

__all__ = [
    "ConnectionProber",
    "FleetCoordinator",
    "ProbeSettings",
    "TelemetryCollector",
]
