"""Static registry of change sources.

Sources are registered by name at startup; workers resolve them by name
when a pass is triggered. Nothing is looked up by reflection.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Dict, Iterator, List, Mapping, Tuple, Type, TypeVar

from recordchange.lib.errors import ConfigurationError
from recordchange.lib.settings import SourceOverride
from recordchange.lib.source import BatchLimit, Source, SourceConfig

logger = logging.getLogger(__name__)

__all__ = [
    "SourceRegistry",
    "apply_source_overrides",
    "default_registry",
    "register_source",
]

S = TypeVar("S", bound=Type[Source])


class SourceRegistry:
    """Mapping of source name to Source instance.

    Example:
        registry = SourceRegistry()
        registry.register(OrderSync())
        registry.get("order_sync").config.max_excessive_count
    """

    def __init__(self) -> None:
        self._sources: Dict[str, Source] = {}

    def register(self, source: Source) -> Source:
        """Register a source under its configured name.

        Raises:
            ConfigurationError: If another source already uses the name
        """
        name = source.config.name
        if name in self._sources:
            raise ConfigurationError(
                f"Source '{name}' is already registered",
                source=name,
                details={"existing": repr(self._sources[name])},
            )
        self._sources[name] = source
        logger.debug("Registered source %s", name)
        return source

    def unregister(self, name: str) -> bool:
        return self._sources.pop(name, None) is not None

    def get(self, name: str) -> Source:
        """Return the source registered under name.

        Raises:
            ConfigurationError: If no such source is registered
        """
        try:
            return self._sources[name]
        except KeyError:
            known = ", ".join(self.names()) or "(none)"
            raise ConfigurationError(
                f"Unknown source '{name}'",
                source=name,
                suggestion=f"Registered sources: {known}",
            ) from None

    def names(self) -> List[str]:
        return sorted(self._sources)

    def __contains__(self, name: object) -> bool:
        return name in self._sources

    def __len__(self) -> int:
        return len(self._sources)

    def __iter__(self) -> Iterator[Source]:
        return iter(self._sources.values())


default_registry = SourceRegistry()


def register_source(registry: SourceRegistry = default_registry) -> Callable[[S], S]:
    """Class decorator registering one instance of a Source subclass.

    Example:
        @register_source()
        class OrderSync(Source):
            config = SourceConfig("order_sync", BatchLimit.of(1000))
            ...
    """

    def decorator(cls: S) -> S:
        registry.register(cls())
        return cls

    return decorator


def apply_source_overrides(
    registry: SourceRegistry,
    overrides: Mapping[str, SourceOverride],
) -> List[str]:
    """Apply operator overrides to registered sources.

    Each overridden source gets a new SourceConfig; the source instance is
    otherwise unchanged. Every override is resolved before any is applied,
    so an invalid entry leaves all sources as they were.

    Returns:
        Names of the sources that were changed

    Raises:
        ConfigurationError: If an override names an unknown source or holds
            an invalid value
    """
    pending: List[Tuple[Source, SourceConfig]] = []
    for name, override in overrides.items():
        source = registry.get(name)
        config = source.config

        if override.max_excessive_count is not None:
            config = replace(
                config, max_excessive_count=BatchLimit.parse(override.max_excessive_count)
            )
        if override.unbounded_stale_age:
            config = replace(config, stale_age=None)
        elif override.stale_age is not None:
            config = replace(config, stale_age=override.stale_age)

        if config != source.config:
            pending.append((source, config))

    changed: List[str] = []
    for source, config in pending:
        logger.info(
            "Overriding source %s: max_excessive_count=%r stale_age=%s",
            source.name,
            config.max_excessive_count,
            config.stale_age,
        )
        source.config = config
        changed.append(source.name)

    return changed
