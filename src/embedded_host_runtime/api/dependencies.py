"""Dependency providers for FastAPI routes."""

from functools import lru_cache

from embedded_host_runtime.application.services import EmbeddedRuntime
from embedded_host_runtime.bootstrap import build_runtime
from embedded_host_runtime.config import Settings
from embedded_host_runtime.infrastructure.host import HostGlobalRegistry


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return singleton settings."""

    return Settings()


@lru_cache(maxsize=1)
def get_host_registry() -> HostGlobalRegistry:
    """Return the singleton host global registry."""

    return HostGlobalRegistry()


@lru_cache(maxsize=1)
def get_runtime() -> EmbeddedRuntime:
    """Return singleton runtime graph."""

    return build_runtime(get_settings(), registry=get_host_registry())


__all__ = ["get_host_registry", "get_runtime", "get_settings"]
