"""
Health monitor for fleet instances.

Each poll inspects every instance in registry order, classifies it from
its container state and an in-container HTTP probe, and compares the
result with the previous cycle. Alerts are edge-triggered: they fire on a
transition into a bad state and are not repeated while it persists.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from fleet.config.models import MonitorConfig
from fleet.domain.registry import InstanceRegistry
from fleet.domain.runtime.base import ContainerInfo
from fleet.domain.types import (
    Alert,
    AlertKind,
    ContainerState,
    FleetStatus,
    HealthRecord,
    Instance,
    InstanceStatus,
    ResourceSample,
)
from fleet.observability import (
    FLEET_INSTANCES,
    HEALTH_CHECK_DURATION,
    INSTANCE_CPU,
    INSTANCE_MEMORY,
    UNHEALTHY_INSTANCES,
)
from fleet.services.notifier import AlertNotifier

logger = logging.getLogger("fleet")
monitor_log = logging.getLogger("fleet.monitor")


def classify(container_state: ContainerState, service_reachable: bool) -> InstanceStatus:
    """Derive an instance status from its container state and probe result."""
    if container_state in (ContainerState.ABSENT, ContainerState.UNHEALTHY):
        return InstanceStatus.UNHEALTHY
    if container_state == ContainerState.STARTING:
        return InstanceStatus.DEGRADED
    return InstanceStatus.RUNNING if service_reachable else InstanceStatus.UNHEALTHY


def container_state_of(info: ContainerInfo | None) -> ContainerState:
    """Map a runtime snapshot onto the container-level health signal."""
    if info is None:
        return ContainerState.ABSENT
    if info.health == "unhealthy":
        return ContainerState.UNHEALTHY
    if info.health == "starting" or info.status in ("created", "restarting"):
        return ContainerState.STARTING
    if info.status == "running":
        return ContainerState.HEALTHY
    return ContainerState.UNHEALTHY


@dataclass
class HealthReport:
    records: list[HealthRecord]
    fleet_status: FleetStatus
    alerts: list[Alert] = field(default_factory=list)
    checked_at: float = field(default_factory=time.time)

    @property
    def healthy(self) -> bool:
        return self.fleet_status == FleetStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "fleet_status": self.fleet_status.value,
            "total": len(self.records),
            "unhealthy": sum(1 for r in self.records if r.status == InstanceStatus.UNHEALTHY),
            "instances": [r.to_dict() for r in self.records],
            "alerts": [a.to_dict() for a in self.alerts],
            "checked_at": self.checked_at,
        }


def _fleet_status(records: list[HealthRecord]) -> FleetStatus:
    if records and all(r.status == InstanceStatus.RUNNING for r in records):
        return FleetStatus.RUNNING
    return FleetStatus.DEGRADED


class HealthMonitor:
    """Polls the fleet and raises edge-triggered alerts."""

    def __init__(
        self,
        registry: InstanceRegistry,
        notifier: AlertNotifier,
        config: MonitorConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.runtime = registry.runtime
        self.notifier = notifier
        self.config = config
        self._clock = clock

        self._previous: dict[str, InstanceStatus] = {}
        self._starting_since: dict[str, float] = {}
        self._stuck_alerted: set[str] = set()
        self._resource_flags: dict[str, set[str]] = {}
        self._fleet_status: FleetStatus | None = None

        self._poll_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.running = False
        self.last_report: HealthReport | None = None

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def probe(self, container: str) -> bool:
        """Hit the service endpoint from inside the container."""
        command = [
            "timeout", str(self.config.probe_timeout),
            "curl", "-fsS", f"http://localhost:{self.config.service_port}/",
        ]
        code, _ = self.runtime.exec(container, command)
        return code == 0

    def resource_breaches(self, resources: ResourceSample | None) -> dict[str, str]:
        if resources is None:
            return {}
        breaches = {}
        if resources.cpu_percent > self.config.cpu_threshold:
            breaches["cpu"] = f"High CPU usage: {resources.cpu_percent:.1f}%"
        if resources.memory_percent > self.config.memory_threshold:
            breaches["memory"] = f"High memory usage: {resources.memory_percent:.1f}%"
        return breaches

    def check_instance(self, instance: Instance) -> HealthRecord:
        """Classify one instance; runtime errors count as an unhealthy container."""
        error = None
        reachable = False
        resources = None
        try:
            state = container_state_of(self.runtime.get(instance.container_id))
            if state == ContainerState.HEALTHY:
                reachable = self.probe(instance.container_id)
        except Exception as e:
            logger.warning(f"Health probe failed for {instance.name}: {e}")
            state = ContainerState.UNHEALTHY
            error = str(e)

        if state == ContainerState.HEALTHY:
            try:
                resources = self.runtime.stats(instance.container_id)
            except Exception as e:
                logger.warning(f"Could not read stats for {instance.name}: {e}")

        status = classify(state, reachable)
        if error is None and state == ContainerState.ABSENT:
            error = "container not found"
        elif error is None and status == InstanceStatus.UNHEALTHY and not reachable:
            error = (
                "service not responding"
                if state == ContainerState.HEALTHY
                else f"container is {state.value}"
            )

        # Thresholds only apply to instances that are otherwise running.
        breaches = self.resource_breaches(resources) if status == InstanceStatus.RUNNING else {}
        return HealthRecord(
            name=instance.name,
            container_state=state,
            service_reachable=reachable,
            status=status,
            resources=resources,
            warnings=list(breaches.values()),
            error=error,
        )

    def check_fleet(self) -> HealthReport:
        """Classify every instance without touching alert state."""
        records = [self.check_instance(i) for i in self.registry.list()]
        return HealthReport(records=records, fleet_status=_fleet_status(records))

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    def poll_once(self) -> HealthReport:
        """
        Run one monitoring cycle: classify, compute transitions, deliver alerts.

        Returns:
            HealthReport with the records and the alerts raised this cycle
        """
        started = time.perf_counter()
        with self._poll_lock:
            report = self.check_fleet()
            now = self._clock()
            alerts: list[Alert] = []

            seen = {r.name for r in report.records}
            for record in report.records:
                if record.container_state == ContainerState.ABSENT:
                    # Listed, then gone before it could be inspected
                    if record.name in self._previous:
                        alerts.append(self._lost(record))
                    else:
                        self._log_record(record)
                else:
                    alerts.extend(self._instance_transitions(record, now))
                    self._log_record(record)

            for name in sorted(set(self._previous) - seen):
                record = HealthRecord(
                    name=name,
                    container_state=ContainerState.ABSENT,
                    service_reachable=False,
                    status=InstanceStatus.UNHEALTHY,
                    error="instance lost",
                )
                report.records.append(record)
                alerts.append(self._lost(record))

            report.fleet_status = _fleet_status(report.records)
            if report.fleet_status == FleetStatus.DEGRADED and self._fleet_status != FleetStatus.DEGRADED:
                unhealthy = [r.name for r in report.records if r.status != InstanceStatus.RUNNING]
                detail = ", ".join(unhealthy) if unhealthy else "no instances running"
                alerts.append(Alert(
                    kind=AlertKind.FLEET_DEGRADED,
                    subject="Fleet degraded",
                    message=f"Fleet is degraded: {detail}",
                ))
            elif report.fleet_status == FleetStatus.RUNNING and self._fleet_status == FleetStatus.DEGRADED:
                monitor_log.info("Fleet recovered, all instances running")
            self._fleet_status = report.fleet_status

            for alert in alerts:
                self.notifier.send(alert)
            report.alerts = alerts

            self._update_gauges(report)
            self.last_report = report

        HEALTH_CHECK_DURATION.observe(time.perf_counter() - started)
        return report

    def _instance_transitions(self, record: HealthRecord, now: float) -> list[Alert]:
        name = record.name
        previous = self._previous.get(name)
        alerts = []

        if record.status == InstanceStatus.UNHEALTHY and previous != InstanceStatus.UNHEALTHY:
            alerts.append(Alert(
                kind=AlertKind.INSTANCE_UNHEALTHY,
                subject=f"Instance {name} unhealthy",
                message=f"Instance {name} is unhealthy: {record.error or 'unknown reason'}",
                instance=name,
            ))

        if record.container_state == ContainerState.STARTING:
            since = self._starting_since.setdefault(name, now)
            if now - since >= self.config.grace_period and name not in self._stuck_alerted:
                self._stuck_alerted.add(name)
                alerts.append(Alert(
                    kind=AlertKind.INSTANCE_STUCK_STARTING,
                    subject=f"Instance {name} stuck starting",
                    message=f"Instance {name} has been starting for more than {self.config.grace_period}s",
                    instance=name,
                ))
        else:
            self._starting_since.pop(name, None)
            self._stuck_alerted.discard(name)

        if record.status == InstanceStatus.RUNNING:
            breaches = self.resource_breaches(record.resources)
        else:
            breaches = {}
        flagged = self._resource_flags.get(name, set())
        for metric in sorted(set(breaches) - flagged):
            alerts.append(Alert(
                kind=AlertKind.RESOURCE_WARNING,
                subject=f"Instance {name} resource warning",
                message=breaches[metric],
                instance=name,
            ))
        self._resource_flags[name] = set(breaches)

        self._previous[name] = record.status
        return alerts

    def _lost(self, record: HealthRecord) -> Alert:
        name = record.name
        self._log_record(record)
        self._forget(name)
        return Alert(
            kind=AlertKind.INSTANCE_LOST,
            subject=f"Instance {name} lost",
            message=f"Instance {name} disappeared from the fleet",
            instance=name,
        )

    def _forget(self, name: str) -> None:
        self._previous.pop(name, None)
        self._starting_since.pop(name, None)
        self._stuck_alerted.discard(name)
        self._resource_flags.pop(name, None)
        for gauge in (INSTANCE_CPU, INSTANCE_MEMORY):
            try:
                gauge.remove(name)
            except KeyError:
                pass

    def _log_record(self, record: HealthRecord) -> None:
        if record.status == InstanceStatus.RUNNING:
            monitor_log.info(f"{record.name}: {record.status.value}")
        else:
            monitor_log.warning(f"{record.name}: {record.status.value} ({record.error or record.container_state.value})")
        for warning in record.warnings:
            monitor_log.warning(f"{record.name}: {warning}")

    def _update_gauges(self, report: HealthReport) -> None:
        present = [r for r in report.records if r.container_state != ContainerState.ABSENT]
        FLEET_INSTANCES.set(len(present))
        UNHEALTHY_INSTANCES.set(sum(1 for r in report.records if r.status == InstanceStatus.UNHEALTHY))
        for record in report.records:
            if record.resources is not None:
                INSTANCE_CPU.labels(instance=record.name).set(record.resources.cpu_percent)
                INSTANCE_MEMORY.labels(instance=record.name).set(record.resources.memory_percent)

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def run_forever(self) -> None:
        """Poll until stop() is called; an in-flight cycle always completes."""
        self.running = True
        logger.info(f"Health monitor started (interval {self.config.interval}s)")
        try:
            while not self._stop_event.is_set():
                try:
                    self.poll_once()
                except Exception as e:
                    logger.error(f"Monitor error: {e}")
                self._stop_event.wait(self.config.interval)
        finally:
            self.running = False
            logger.info("Health monitor stopped")

    def start(self) -> None:
        """Start polling on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="fleet-monitor", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
