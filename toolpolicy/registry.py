"""Capability catalog of tool descriptors plus lazy implementation loading.

The registry is an explicitly constructed object owned by the composing
application. Registration is expected to finish during setup; mutating the
catalog while other callers resolve or filter against it is the caller's
responsibility (nothing here takes a lock for it).
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

from .context import ContextLevel, ToolContext
from .models import ModuleLoader, ToolDescriptor
from .settings import check_settings_schema

__all__ = [
    "DuplicateToolError",
    "RegistryError",
    "ToolRegistry",
    "UnknownToolError",
    "import_module_loader",
]

LOGGER = logging.getLogger(__name__)


class RegistryError(Exception):
    """Base class for structural misuse of the tool registry."""


class DuplicateToolError(RegistryError):
    def __init__(self, tool_id: str) -> None:
        super().__init__(f"tool '{tool_id}' is already registered")
        self.tool_id = tool_id


class UnknownToolError(RegistryError, LookupError):
    def __init__(self, tool_id: str) -> None:
        super().__init__(f"cannot override non-existent tool '{tool_id}'")
        self.tool_id = tool_id


class ToolRegistry:
    """Store tool descriptors keyed by id with an accommodation reverse index."""

    def __init__(self, descriptors: Iterable[ToolDescriptor] | None = None) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        self._accommodation_index: dict[str, set[str]] = {}
        self._module_loaders: dict[str, ModuleLoader] = {}
        self._loaded_modules: set[str] = set()
        self._inflight_loads: dict[str, asyncio.Future[None]] = {}
        for descriptor in descriptors or ():
            self.register(descriptor)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register(self, descriptor: ToolDescriptor) -> None:
        if not isinstance(descriptor, ToolDescriptor):
            raise TypeError("register() expects a ToolDescriptor")
        if descriptor.tool_id in self._tools:
            raise DuplicateToolError(descriptor.tool_id)
        if descriptor.settings_schema is not None:
            check_settings_schema(descriptor.tool_id, descriptor.settings_schema)
        self._tools[descriptor.tool_id] = descriptor
        self._index(descriptor)
        if descriptor.module_loader is not None:
            self._module_loaders[descriptor.tool_id] = descriptor.module_loader

    def override(self, descriptor: ToolDescriptor) -> None:
        """Replace an existing registration and rebuild its index entries."""

        existing = self._tools.get(descriptor.tool_id)
        if existing is None:
            raise UnknownToolError(descriptor.tool_id)
        if descriptor.settings_schema is not None:
            check_settings_schema(descriptor.tool_id, descriptor.settings_schema)
        self._unindex(existing)
        self._tools[descriptor.tool_id] = descriptor
        self._index(descriptor)
        if descriptor.module_loader is not None:
            self._module_loaders[descriptor.tool_id] = descriptor.module_loader
        elif existing.module_loader is not None:
            self._module_loaders.pop(descriptor.tool_id, None)
        # The replacement may ship a different implementation.
        self._forget_module(descriptor.tool_id)

    def unregister(self, tool_id: str) -> None:
        descriptor = self._tools.pop(tool_id, None)
        if descriptor is None:
            return
        self._unindex(descriptor)
        self._module_loaders.pop(tool_id, None)
        self._forget_module(tool_id)

    def clear(self) -> None:
        self._tools.clear()
        self._accommodation_index.clear()
        self._module_loaders.clear()
        self._loaded_modules.clear()
        self._inflight_loads.clear()

    def _index(self, descriptor: ToolDescriptor) -> None:
        for accommodation_id in descriptor.accommodation_ids:
            self._accommodation_index.setdefault(accommodation_id, set()).add(descriptor.tool_id)

    def _unindex(self, descriptor: ToolDescriptor) -> None:
        for accommodation_id in descriptor.accommodation_ids:
            tools = self._accommodation_index.get(accommodation_id)
            if tools is None:
                continue
            tools.discard(descriptor.tool_id)
            if not tools:
                del self._accommodation_index[accommodation_id]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, tool_id: str) -> ToolDescriptor | None:
        return self._tools.get(tool_id)

    def has(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def tool_ids(self) -> tuple[str, ...]:
        return tuple(self._tools)

    def tools(self) -> tuple[ToolDescriptor, ...]:
        return tuple(self._tools.values())

    def tools_for_accommodation(self, accommodation_id: str) -> frozenset[str]:
        return frozenset(self._accommodation_index.get(accommodation_id, ()))

    def tools_by_level(self, level: ContextLevel | str) -> tuple[ToolDescriptor, ...]:
        resolved = ContextLevel.from_str(level)
        return tuple(tool for tool in self._tools.values() if resolved in tool.supported_levels)

    def tool_metadata(self) -> list[dict[str, Any]]:
        return [descriptor.metadata() for descriptor in self._tools.values()]

    def accommodations_for_tools(self, tool_ids: Iterable[str]) -> tuple[str, ...]:
        """Return the accommodation ids that would grant ``tool_ids``.

        Useful when building a profile from a set of desired tools.
        """

        accommodations: dict[str, None] = {}
        for tool_id in tool_ids:
            descriptor = self._tools.get(tool_id)
            if descriptor is None:
                continue
            accommodations.update(dict.fromkeys(descriptor.accommodation_ids))
        return tuple(accommodations)

    @property
    def accommodation_index(self) -> Mapping[str, frozenset[str]]:
        return MappingProxyType(
            {key: frozenset(value) for key, value in self._accommodation_index.items()}
        )

    # ------------------------------------------------------------------
    # Pass 2: context relevance
    # ------------------------------------------------------------------
    def filter_visible_in_context(
        self,
        allowed_tool_ids: Iterable[str],
        context: ToolContext,
    ) -> list[ToolDescriptor]:
        """Return descriptors from ``allowed_tool_ids`` relevant to ``context``.

        ``allowed_tool_ids`` is the output of policy resolution. Tools that are
        unregistered, do not support ``context.level``, or whose predicate
        raises are left out; the rest of the batch is unaffected.
        """

        visible: list[ToolDescriptor] = []
        seen: set[str] = set()
        for tool_id in allowed_tool_ids:
            if tool_id in seen:
                continue
            seen.add(tool_id)

            descriptor = self._tools.get(tool_id)
            if descriptor is None:
                LOGGER.warning("tool '%s' is allowed but not registered", tool_id)
                continue
            if context.level not in descriptor.supported_levels:
                continue
            try:
                relevant = bool(descriptor.is_visible_in_context(context))
            except Exception:
                LOGGER.exception(
                    "error evaluating visibility for tool '%s' at level '%s'",
                    tool_id,
                    context.level.value,
                )
                continue
            if relevant:
                visible.append(descriptor)
        return visible

    # ------------------------------------------------------------------
    # Lazy module loading
    # ------------------------------------------------------------------
    def set_module_loader(self, tool_id: str, loader: ModuleLoader | None) -> None:
        if loader is not None and not callable(loader):
            raise TypeError(f"module loader for '{tool_id}' must be callable")
        if self._module_loaders.get(tool_id) is loader:
            return
        if loader is None:
            self._module_loaders.pop(tool_id, None)
        else:
            self._module_loaders[tool_id] = loader
        self._forget_module(tool_id)

    def _forget_module(self, tool_id: str) -> None:
        """Drop load state so the next ensure call runs the current loader.

        A load already in flight keeps running for its waiters but no longer
        marks the tool as loaded.
        """

        self._loaded_modules.discard(tool_id)
        self._inflight_loads.pop(tool_id, None)

    def is_module_loaded(self, tool_id: str) -> bool:
        return tool_id in self._loaded_modules

    async def ensure_module_loaded(self, tool_id: str) -> None:
        """Load ``tool_id``'s implementation at most once.

        Concurrent callers share a single in-flight load. The in-flight entry
        is dropped once the load settles, so a failed load is retried by the
        next call.
        """

        if tool_id in self._loaded_modules:
            return
        loader = self._module_loaders.get(tool_id)
        if loader is None:
            return

        pending = self._inflight_loads.get(tool_id)
        if pending is None:
            pending = asyncio.ensure_future(self._run_loader(tool_id, loader))
            self._inflight_loads[tool_id] = pending
        else:
            LOGGER.debug("joining in-flight module load for '%s'", tool_id)
        # A cancelled waiter must not cancel the load shared with other waiters.
        await asyncio.shield(pending)

    async def ensure_modules_loaded(self, tool_ids: Iterable[str]) -> None:
        await asyncio.gather(*(self.ensure_module_loaded(tool_id) for tool_id in dict.fromkeys(tool_ids)))

    async def _run_loader(self, tool_id: str, loader: ModuleLoader) -> None:
        LOGGER.debug("loading module for tool '%s'", tool_id)
        try:
            result = loader()
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.warning("module load failed for tool '%s'", tool_id)
            raise
        else:
            if self._module_loaders.get(tool_id) is loader:
                self._loaded_modules.add(tool_id)
        finally:
            if self._inflight_loads.get(tool_id) is asyncio.current_task():
                self._inflight_loads.pop(tool_id, None)


def import_module_loader(*module_names: str) -> ModuleLoader:
    """Build a loader importing ``module_names`` without blocking the event loop."""

    if not module_names:
        raise ValueError("import_module_loader requires at least one module name")

    async def _load() -> None:
        await asyncio.gather(
            *(asyncio.to_thread(importlib.import_module, name) for name in module_names)
        )

    return _load
