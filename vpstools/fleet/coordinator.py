"""Fleet roster, probe sequencing and cached per-instance state.

The coordinator is an explicitly constructed service: prober, telemetry
collector and session factory are injected, nothing is global.

State:
    roster      instance id -> VPSInstance (insertion ordered)
    results     instance id -> last ConnectionTestResult (never persisted)
    in_flight   instance id -> Future of the probe currently running
    history     instance id -> bounded deque of MetricsSample

A single ``threading.Lock`` guards all four maps. It is only held for
dictionary work, never across an await, so probes against different
instances overlap freely.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

import asyncssh
from loguru import logger
from pydantic import ValidationError

from vpstools.api.draft import InstancePatch, VPSDraft
from vpstools.api.model import (
    ConnectionTestResult,
    MetricsSample,
    SystemInfo,
    VPSInstance,
    VPSService,
    utcnow,
)
from vpstools.constants import METRICS_HISTORY_SIZE
from vpstools.core.exceptions import (
    ConnectionFailedError,
    DuplicateServiceError,
    InvalidConfigurationError,
    NotConnectedError,
    UnknownInstanceError,
)
from vpstools.fleet.prober import ConnectionProber
from vpstools.fleet.telemetry import TelemetryCollector
from vpstools.infra.protocols import RemoteSession, SessionFactory


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item["loc"]) or "draft"
        parts.append(f"{loc}: {item['msg']}")
    return "; ".join(parts)


def _failure_message(instance: VPSInstance, result: ConnectionTestResult) -> str:
    if not result.ping_success:
        return f"{instance.host}:{instance.port} is unreachable ({result.ssh_error})"
    return f"SSH login to {instance.connection_string} failed: {result.ssh_error}"


def _same_endpoint(a: VPSInstance, b: VPSInstance) -> bool:
    return (a.host, a.port, a.username, a.credential) == (b.host, b.port, b.username, b.credential)

class FleetCoordinator:
    """Owns the VPS roster and serializes probes per instance.

    Example:
        coordinator = FleetCoordinator()
        vps = await coordinator.add_instance(
            VPSDraft(host="203.0.113.5", username="root", password="secret")
        )
        result = await coordinator.test_connection(vps.id)
        info = await coordinator.get_system_info(vps.id)
    """

    def __init__(
        self,
        prober: ConnectionProber | None = None,
        collector: TelemetryCollector | None = None,
        session_factory: SessionFactory | None = None,
        history_size: int = METRICS_HISTORY_SIZE,
    ) -> None:
        self.prober = prober or ConnectionProber()
        self.collector = collector or TelemetryCollector()
        self.session_factory = session_factory or self.prober.session_factory
        self.history_size = history_size

        self._lock = threading.Lock()
        self._roster: dict[str, VPSInstance] = {}
        self._results: dict[str, ConnectionTestResult] = {}
        self._in_flight: dict[str, concurrent.futures.Future[ConnectionTestResult]] = {}
        self._history: dict[str, deque[MetricsSample]] = {}
        self._probed = False
        self._log = logger.bind(component="fleet")

    # -------------------------------------------------------------------------
    # Roster
    # -------------------------------------------------------------------------

    async def add_instance(self, draft: VPSDraft | Mapping[str, Any]) -> VPSInstance:
        """Validate, probe once, and admit on success.

        Raises:
            InvalidConfigurationError: Malformed draft or duplicate host:port.
                No I/O has happened.
            ConnectionFailedError: The admission probe did not succeed. The
                roster is unchanged.
        """
        if not isinstance(draft, VPSDraft):
            try:
                draft = VPSDraft.model_validate(draft)
            except ValidationError as e:
                raise InvalidConfigurationError(_validation_message(e)) from e

        with self._lock:
            self._check_endpoint_free(draft.host, draft.port)

        candidate = draft.build()
        log = self._log.bind(instance_id=candidate.id)
        log.info("Admission probe for {target}", target=candidate.connection_string)

        result = await self.prober.probe(candidate)
        if not result.ssh_success:
            log.warning("Admission rejected: {error}", error=result.ssh_error)
            raise ConnectionFailedError(_failure_message(candidate, result))

        instance = replace(candidate, last_connected=result.timestamp)
        with self._lock:
            # Another admission for the same endpoint may have won the race.
            self._check_endpoint_free(instance.host, instance.port)
            self._roster[instance.id] = instance
            self._results[instance.id] = result
            self._probed = True

        log.info("Admitted {name} ({target})", name=instance.display_name, target=instance.connection_string)
        return instance

    def delete_instance(self, instance_id: str) -> bool:
        """Remove an instance and every cached entry for it. Idempotent.

        Client configurations referencing the instance are untouched.

        Returns:
            True if something was removed.
        """
        with self._lock:
            removed = self._roster.pop(instance_id, None)
            self._results.pop(instance_id, None)
            self._in_flight.pop(instance_id, None)
            self._history.pop(instance_id, None)

        if removed is not None:
            self._log.bind(instance_id=instance_id).info("Deleted {name}", name=removed.display_name)
        return removed is not None

    def edit_instance(
        self,
        instance_id: str,
        patch: InstancePatch | Mapping[str, Any],
    ) -> VPSInstance:
        """Apply field changes. Does not re-probe.

        Changing the host, port, username or credential drops the stored
        probe result and metrics history; the new endpoint is untested.

        Raises:
            UnknownInstanceError: No such instance.
            InvalidConfigurationError: The merged record does not validate.
        """
        try:
            if not isinstance(patch, InstancePatch):
                patch = InstancePatch.model_validate(patch)
            with self._lock:
                current = self._require(instance_id)
                updated = patch.apply(current)
                self._check_endpoint_free(updated.host, updated.port, ignore=instance_id)
                self._roster[instance_id] = updated
                if not _same_endpoint(current, updated):
                    self._results.pop(instance_id, None)
                    self._history.pop(instance_id, None)
        except ValidationError as e:
            raise InvalidConfigurationError(_validation_message(e)) from e

        self._log.bind(instance_id=instance_id).debug("Edited {name}", name=updated.display_name)
        return updated

    def add_service(self, instance_id: str, service: VPSService) -> VPSInstance:
        """Attach a deployed service. Only id uniqueness is checked."""
        with self._lock:
            current = self._require(instance_id)
            if current.service(service.id) is not None:
                raise DuplicateServiceError(instance_id, service.id)
            updated = replace(current, services=(*current.services, service), updated_at=utcnow())
            self._roster[instance_id] = updated
        return updated

    def remove_service(self, instance_id: str, service_id: str) -> VPSInstance:
        with self._lock:
            current = self._require(instance_id)
            services = tuple(s for s in current.services if s.id != service_id)
            if len(services) == len(current.services):
                return current
            updated = replace(current, services=services, updated_at=utcnow())
            self._roster[instance_id] = updated
        return updated

    def clear(self) -> None:
        """Drop the roster and all transient state."""
        with self._lock:
            self._roster.clear()
            self._results.clear()
            self._in_flight.clear()
            self._history.clear()

    # -------------------------------------------------------------------------
    # Probes
    # -------------------------------------------------------------------------

    async def test_connection(self, instance_id: str) -> ConnectionTestResult:
        """Probe one instance, or join the probe already running for it.

        A second caller while a probe is in flight observes that probe's
        result; it never starts another.

        Raises:
            UnknownInstanceError: No such instance.
        """
        with self._lock:
            instance = self._require(instance_id)
            pending = self._in_flight.get(instance_id)
            owner = pending is None
            if pending is None:
                pending = concurrent.futures.Future()
                self._in_flight[instance_id] = pending

        if not owner:
            self._log.bind(instance_id=instance_id).debug("Joining in-flight probe")
            # Shielded so a cancelled waiter cannot cancel the shared probe.
            return await asyncio.shield(asyncio.wrap_future(pending))

        try:
            result = await self.prober.probe(instance)
        except BaseException as e:
            with self._lock:
                if self._in_flight.get(instance_id) is pending:
                    del self._in_flight[instance_id]
            if isinstance(e, Exception):
                pending.set_exception(e)
            else:
                pending.cancel()
            raise

        with self._lock:
            if self._in_flight.get(instance_id) is pending:
                del self._in_flight[instance_id]
            self._probed = True
            current = self._roster.get(instance_id)
            # Not stored if the instance was deleted or re-pointed meanwhile.
            if current is not None and _same_endpoint(current, instance):
                self._results[instance_id] = result
                if result.ssh_success:
                    self._roster[instance_id] = replace(current, last_connected=result.timestamp)

        pending.set_result(result)
        return result

    async def test_all_connections(self) -> dict[str, ConnectionTestResult]:
        """Probe every instance concurrently and wait for all to settle.

        Instances deleted while the sweep runs are left out of the result.
        """
        with self._lock:
            ids = list(self._roster)

        self._log.info("Probing {n} instances", n=len(ids))
        outcomes = await asyncio.gather(
            *(self.test_connection(i) for i in ids),
            return_exceptions=True,
        )

        results: dict[str, ConnectionTestResult] = {}
        for instance_id, outcome in zip(ids, outcomes, strict=True):
            match outcome:
                case ConnectionTestResult():
                    results[instance_id] = outcome
                case UnknownInstanceError():
                    continue
                case BaseException():
                    raise outcome

        with self._lock:
            self._probed = True

        ok = sum(1 for r in results.values() if r.is_connected)
        self._log.info("Probe sweep done: {ok}/{total} reachable", ok=ok, total=len(results))
        return results

    def needs_initial_probe_sweep(self) -> bool:
        """True iff the roster is non-empty and nothing was probed yet."""
        with self._lock:
            return bool(self._roster) and not self._probed

    # -------------------------------------------------------------------------
    # Telemetry
    # -------------------------------------------------------------------------

    async def get_system_info(self, instance_id: str) -> SystemInfo:
        """Collect a fresh snapshot and cache it on the instance.

        Raises:
            UnknownInstanceError: No such instance.
            NotConnectedError: No successful SSH probe is on record.
            ConnectionFailedError: The telemetry session could not be opened.
            CollectionError: A telemetry query failed.
        """
        instance = self._require_connected(instance_id)
        async with await self._open(instance) as session:
            info = await self.collector.collect(session)

        with self._lock:
            current = self._require(instance_id)
            self._roster[instance_id] = replace(current, system_info=info, updated_at=utcnow())

        self._log.bind(instance_id=instance_id).debug("Stored system info")
        return info

    async def sample_metrics(self, instance_id: str) -> MetricsSample:
        """Take one resource sample and append it to the bounded history."""
        instance = self._require_connected(instance_id)
        async with await self._open(instance) as session:
            sample = await self.collector.sample(session)

        with self._lock:
            self._require(instance_id)
            history = self._history.setdefault(instance_id, deque(maxlen=self.history_size))
            history.append(sample)
        return sample

    def metrics_history(self, instance_id: str) -> list[MetricsSample]:
        with self._lock:
            self._require(instance_id)
            return list(self._history.get(instance_id, ()))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def instances(self) -> list[VPSInstance]:
        with self._lock:
            return list(self._roster.values())

    def get(self, instance_id: str) -> VPSInstance | None:
        with self._lock:
            return self._roster.get(instance_id)

    def groups(self) -> dict[str, list[VPSInstance]]:
        """Instances bucketed by group, groups sorted by name."""
        buckets: dict[str, list[VPSInstance]] = {}
        for instance in self.instances():
            buckets.setdefault(instance.group, []).append(instance)
        return dict(sorted(buckets.items()))

    def test_result(self, instance_id: str) -> ConnectionTestResult | None:
        with self._lock:
            return self._results.get(instance_id)

    def is_testing(self, instance_id: str) -> bool:
        with self._lock:
            return instance_id in self._in_flight

    def connection_stats(self) -> dict[str, int]:
        with self._lock:
            total = len(self._roster)
            reachable = sum(1 for r in self._results.values() if r.is_connected)
            failed = len(self._results) - reachable
            testing = len(self._in_flight)
        return {
            "total": total,
            "reachable": reachable,
            "failed": failed,
            "untested": total - reachable - failed,
            "testing": testing,
        }

    # -------------------------------------------------------------------------
    # Persistence boundary
    # -------------------------------------------------------------------------

    def snapshot(self) -> list[VPSInstance]:
        """The roster as immutable records. Transient state is excluded."""
        return self.instances()

    def restore(self, instances: Iterable[VPSInstance]) -> None:
        """Replace the roster wholesale. Transient state is reset.

        Raises:
            InvalidConfigurationError: Duplicate ids in ``instances``.
        """
        roster: dict[str, VPSInstance] = {}
        for instance in instances:
            if instance.id in roster:
                raise InvalidConfigurationError(f"duplicate instance id {instance.id} in snapshot")
            roster[instance.id] = instance

        with self._lock:
            self._roster = roster
            self._results.clear()
            self._in_flight.clear()
            self._history.clear()

        self._log.info("Restored {n} instances", n=len(roster))

    # -------------------------------------------------------------------------
    # Internals (callers hold the lock where noted)
    # -------------------------------------------------------------------------

    def _require(self, instance_id: str) -> VPSInstance:
        """Lock held."""
        instance = self._roster.get(instance_id)
        if instance is None:
            raise UnknownInstanceError(instance_id)
        return instance

    def _check_endpoint_free(self, host: str, port: int, ignore: str | None = None) -> None:
        """Lock held."""
        for other in self._roster.values():
            if other.id != ignore and other.host.lower() == host.lower() and other.port == port:
                raise InvalidConfigurationError(
                    f"{host}:{port} is already managed as '{other.display_name}'"
                )

    def _require_connected(self, instance_id: str) -> VPSInstance:
        with self._lock:
            instance = self._require(instance_id)
            result = self._results.get(instance_id)
        if result is None or not result.ssh_success:
            raise NotConnectedError(instance_id)
        return instance

    async def _open(self, instance: VPSInstance) -> RemoteSession:
        try:
            return await self.session_factory(instance)
        except (asyncssh.Error, OSError, TimeoutError) as e:
            raise ConnectionFailedError(f"cannot open session to {instance.connection_string}: {e}") from e
