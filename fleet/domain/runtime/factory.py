"""
Factory for the container runtime.
"""

from __future__ import annotations

import logging
import threading

from typing import Any

from fleet.domain.runtime.base import ContainerRuntime

logger = logging.getLogger("fleet")

# Singleton instance
_lock = threading.Lock()
_runtime: Any = None


def get_runtime() -> ContainerRuntime:
    """
    Get the container runtime.

    Uses double-checked locking to ensure only one Docker client
    exists even when accessed concurrently from multiple threads.

    Returns:
        ContainerRuntime instance
    """
    global _runtime

    if _runtime is not None:
        return _runtime

    with _lock:
        if _runtime is not None:
            return _runtime

        from fleet.domain.runtime.docker_runtime import DockerRuntime

        logger.info("Initializing docker runtime")
        _runtime = DockerRuntime()

    return _runtime


def set_runtime(runtime: ContainerRuntime | None) -> None:
    """
    Replace the runtime singleton.

    Useful for testing or configuration changes; ``None`` resets it.
    """
    global _runtime
    with _lock:
        _runtime = runtime
