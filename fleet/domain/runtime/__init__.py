"""
Container runtime module.

The fleet logic talks to containers only through ``ContainerRuntime``;
Docker is the production backend.
"""

from fleet.domain.runtime.base import BindMount, ContainerInfo, ContainerRuntime, ContainerSpec
from fleet.domain.runtime.factory import get_runtime, set_runtime

__all__ = [
    "BindMount",
    "ContainerInfo",
    "ContainerRuntime",
    "ContainerSpec",
    "get_runtime",
    "set_runtime",
]
