"""Explicit wiring of the fleet coordinator, compiler and store.

Nothing here is global: a Workspace is built once by the process and
passed to whatever needs it.

Example:
    workspace = Workspace.from_settings(load_settings())
    workspace.load()
    if workspace.coordinator.needs_initial_probe_sweep():
        await workspace.coordinator.test_all_connections()
    ...
    workspace.save()
"""

from __future__ import annotations

from dataclasses import dataclass

from vpstools.compiler.compiler import ConfigurationCompiler
from vpstools.config import Settings
from vpstools.export.sink import FileSink
from vpstools.fleet.coordinator import FleetCoordinator
from vpstools.fleet.prober import ConnectionProber
from vpstools.fleet.telemetry import TelemetryCollector
from vpstools.store import FleetSnapshot, JsonStore


@dataclass
class Workspace:
    coordinator: FleetCoordinator
    compiler: ConfigurationCompiler
    store: JsonStore

    @classmethod
    def from_settings(cls, settings: Settings) -> Workspace:
        prober = ConnectionProber(settings.probe)
        collector = TelemetryCollector(command_timeout=settings.telemetry.command_timeout)
        return cls(
            coordinator=FleetCoordinator(
                prober=prober,
                collector=collector,
                history_size=settings.telemetry.history_size,
            ),
            compiler=ConfigurationCompiler(sink=FileSink(settings.export.directory)),
            store=JsonStore(settings.store.path),
        )

    def load(self) -> bool:
        """Restore roster and catalog from the store.

        Either both halves are replaced or neither is: the snapshot is fully
        validated (duplicate ids, credential fields) before anything changes.

        Returns:
            False if the store was empty.

        Raises:
            InvalidConfigurationError: The stored snapshot is invalid.
        """
        snapshot = self.store.load()
        if snapshot is None:
            return False
        roster = snapshot.roster()
        self.coordinator.restore(roster)
        self.compiler.restore(snapshot.configurations)
        return True

    def save(self) -> None:
        self.store.save(
            FleetSnapshot.capture(self.coordinator.snapshot(), self.compiler.snapshot())
        )
