"""
Docker implementation of the container runtime.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime

import docker
import docker.errors
import docker.types
from docker.models.containers import Container

from fleet.config.loader import FleetConfig
from fleet.domain.runtime.base import ContainerInfo, ContainerSpec
from fleet.domain.types import ResourceSample
from fleet.errors import InstanceNotFound, RuntimeFailure

logger = logging.getLogger("fleet")


def _parse_created(value: str | None) -> float:
    """Convert Docker's RFC 3339 'Created' timestamp (nanosecond precision) to epoch seconds."""
    if not value:
        return 0.0
    head, _, frac = value.rstrip("Z").partition(".")
    frac = (frac[:6] if frac else "0").ljust(6, "0")
    try:
        dt = datetime.fromisoformat(f"{head}.{frac}+00:00")
    except ValueError:
        return 0.0
    return dt.timestamp()


def _host_ports(attrs: dict) -> dict[int, int]:
    """Extract container-port -> host-port bindings from inspect data."""
    bindings = (attrs.get("HostConfig") or {}).get("PortBindings") or {}
    result: dict[int, int] = {}
    for key, values in bindings.items():
        if not values:
            continue
        host_port = values[0].get("HostPort")
        if not host_port:
            continue
        try:
            result[int(key.split("/")[0])] = int(host_port)
        except ValueError:
            continue
    return result


def compute_resource_sample(stats: dict) -> ResourceSample:
    """
    Compute CPU and memory percentages the way ``docker stats`` does.

    Args:
        stats: Raw payload from ``container.stats(stream=False)``

    Returns:
        ResourceSample
    """
    cpu_stats = stats.get("cpu_stats") or {}
    precpu = stats.get("precpu_stats") or {}
    cpu_delta = (cpu_stats.get("cpu_usage") or {}).get("total_usage", 0) - (
        precpu.get("cpu_usage") or {}
    ).get("total_usage", 0)
    system_delta = cpu_stats.get("system_cpu_usage", 0) - precpu.get("system_cpu_usage", 0)
    online_cpus = cpu_stats.get("online_cpus") or len(
        (cpu_stats.get("cpu_usage") or {}).get("percpu_usage") or [1]
    )
    cpu_percent = 0.0
    if cpu_delta > 0 and system_delta > 0:
        cpu_percent = cpu_delta / system_delta * online_cpus * 100.0

    memory = stats.get("memory_stats") or {}
    usage = memory.get("usage", 0)
    # Page cache is reclaimable, docker stats subtracts it too
    mem_detail = memory.get("stats") or {}
    usage -= mem_detail.get("inactive_file", mem_detail.get("cache", 0))
    usage = max(usage, 0)
    limit = memory.get("limit", 0)
    memory_percent = usage / limit * 100.0 if limit else 0.0

    return ResourceSample(
        cpu_percent=round(cpu_percent, 2),
        memory_percent=round(memory_percent, 2),
        memory_usage=int(usage),
        memory_limit=int(limit),
    )


class DockerRuntime:
    """Docker-based container runtime."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        """Initialize Docker client."""
        if client is None:
            timeout = FleetConfig.settings().runtime.call_timeout
            client = docker.from_env(timeout=timeout)
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        """Get the Docker client."""
        return self._client

    def _ensure_network(self, network_name: str) -> None:
        try:
            self._client.networks.get(network_name)
        except docker.errors.NotFound:
            logger.info(f"Creating network {network_name}")
            self._client.networks.create(network_name, driver="bridge")

    def _container(self, name: str) -> Container:
        try:
            return self._client.containers.get(name)
        except docker.errors.NotFound:
            raise InstanceNotFound(name) from None
        except docker.errors.APIError as e:
            raise RuntimeFailure(f"Docker error for {name}: {e}") from e

    @staticmethod
    def _info(container: Container) -> ContainerInfo:
        attrs = container.attrs or {}
        state = attrs.get("State") or {}
        health = (state.get("Health") or {}).get("Status")
        return ContainerInfo(
            container_id=container.id,
            name=container.name,
            status=container.status,
            labels=dict(container.labels or {}),
            ports=_host_ports(attrs),
            health=health,
            created_at=_parse_created(attrs.get("Created")),
        )

    def run(self, spec: ContainerSpec) -> ContainerInfo:
        """
        Create and start a labeled container.

        Args:
            spec: Container specification

        Returns:
            ContainerInfo of the started container
        """
        mounts = [
            docker.types.Mount(
                target=m.target,
                source=m.source,
                type="bind",
                read_only=m.read_only,
            )
            for m in spec.mounts
        ]
        kwargs = {}
        if spec.restart_policy:
            kwargs["restart_policy"] = {"Name": spec.restart_policy}

        try:
            if spec.network:
                self._ensure_network(spec.network)
            container = self._client.containers.run(
                spec.image,
                name=spec.name,
                detach=True,
                environment=spec.environment,
                mounts=mounts,
                labels=spec.labels,
                ports={f"{cport}/tcp": hport for cport, hport in spec.ports.items()},
                network=spec.network,
                **kwargs,
            )
        except docker.errors.DockerException as e:
            self._discard_failed(spec)
            raise RuntimeFailure(f"Failed to start {spec.name}: {e}") from e

        try:
            container.reload()
        except docker.errors.DockerException as e:
            try:
                container.remove(force=True)
            except docker.errors.DockerException as remove_error:
                logger.error(f"Could not remove uninspectable container {spec.name}: {remove_error}")
            raise RuntimeFailure(f"Failed to inspect {spec.name} after start: {e}") from e
        logger.info(f"Container {spec.name} started ({container.id[:12]})")
        return self._info(container)

    def _discard_failed(self, spec: ContainerSpec) -> None:
        """Remove a labeled container left in 'created' state by a failed run."""
        try:
            container = self._client.containers.get(spec.name)
            labels = container.labels or {}
            if container.status != "created" or any(labels.get(k) != v for k, v in spec.labels.items()):
                return
            container.remove(force=True)
            logger.warning(f"Removed half-created container {spec.name}")
        except docker.errors.NotFound:
            pass
        except docker.errors.APIError as e:
            logger.error(f"Could not remove half-created container {spec.name}: {e}")

    def list(self, labels: dict[str, str]) -> list[ContainerInfo]:
        filters = {"label": [f"{k}={v}" for k, v in labels.items()]}
        try:
            containers = self._client.containers.list(all=True, filters=filters)
        except docker.errors.APIError as e:
            raise RuntimeFailure(f"Error listing containers: {e}") from e
        return [self._info(c) for c in containers]

    def get(self, name: str) -> ContainerInfo | None:
        try:
            return self._info(self._container(name))
        except InstanceNotFound:
            return None

    def start(self, name: str) -> None:
        container = self._container(name)
        try:
            container.start()
        except docker.errors.APIError as e:
            raise RuntimeFailure(f"Failed to start {name}: {e}") from e

    def stop(self, name: str, timeout: int = 10) -> None:
        container = self._container(name)
        try:
            container.stop(timeout=timeout)
        except docker.errors.NotFound:
            raise InstanceNotFound(name) from None
        except docker.errors.APIError as e:
            raise RuntimeFailure(f"Failed to stop {name}: {e}") from e

    def remove(self, name: str) -> None:
        container = self._container(name)
        try:
            container.remove(force=True)
            logger.info(f"Container {name} removed")
        except docker.errors.NotFound:
            raise InstanceNotFound(name) from None
        except docker.errors.APIError as e:
            raise RuntimeFailure(f"Failed to remove {name}: {e}") from e

    def stats(self, name: str) -> ResourceSample:
        container = self._container(name)
        try:
            return compute_resource_sample(container.stats(stream=False))
        except docker.errors.APIError as e:
            raise RuntimeFailure(f"Failed to read stats for {name}: {e}") from e

    def exec(self, name: str, command: list[str]) -> tuple[int, str]:
        container = self._container(name)
        try:
            result = container.exec_run(command)
        except docker.errors.APIError as e:
            raise RuntimeFailure(f"Exec failed in {name}: {e}") from e
        output = result.output.decode("utf-8", "replace") if result.output else ""
        return result.exit_code, output

    def logs(self, name: str, tail: int | None = None, follow: bool = False) -> Iterator[str]:
        container = self._container(name)
        kwargs = {"tail": tail if tail is not None else "all"}
        if follow:
            for chunk in container.logs(stream=True, follow=True, **kwargs):
                yield chunk.decode("utf-8", "replace").rstrip("\n")
            return
        output = container.logs(stream=False, **kwargs)
        yield from output.decode("utf-8", "replace").splitlines()
