"""In-process registry of values injected by the host environment."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from copy import deepcopy
from typing import Any

from embedded_host_runtime.domain.ports import HostRegistry

logger = logging.getLogger(__name__)


class HostGlobalRegistry(HostRegistry):
    """Host-owned named values plus a load-complete signal.

    The host writes through `inject`/`mark_loaded`; the runtime only reads.
    Readers receive deep copies so host state cannot be mutated through them.
    """

    def __init__(
        self,
        initial: Mapping[str, Any] | None = None,
        *,
        loaded: bool = False,
    ) -> None:
        self._values: dict[str, Any] = dict(initial or {})
        self._loaded = asyncio.Event()
        if loaded:
            self._loaded.set()

    def get(self, name: str, default: Any = None) -> Any:
        """Return a copy of one injected value."""

        if name not in self._values:
            return default
        return deepcopy(self._values[name])

    def contains(self, name: str) -> bool:
        """Return whether the host defined a value (None counts as undefined)."""

        return self._values.get(name) is not None

    def names(self) -> list[str]:
        """Return injected value names."""

        return sorted(self._values)

    @property
    def loaded(self) -> bool:
        """Return whether the host signalled load completion."""

        return self._loaded.is_set()

    async def wait_loaded(self) -> None:
        """Block until the host signals load completion."""

        await self._loaded.wait()

    def inject(self, name: str, value: Any) -> None:
        """Host-side write of one named value."""

        self._values[name] = value
        logger.debug("Host injected global '%s'.", name)

    def mark_loaded(self) -> None:
        """Host-side load-complete signal."""

        if not self._loaded.is_set():
            logger.debug("Host signalled load completion.")
        self._loaded.set()


__all__ = ["HostGlobalRegistry"]
