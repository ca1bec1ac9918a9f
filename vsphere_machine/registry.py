"""
Driver registry.

The host process owns a DriverRegistry and registers the drivers it wants to
expose by name; nothing is registered at import time.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Union

logger = logging.getLogger(__name__)

DriverFactory = Callable[..., Any]


class DriverRegistry:
    """Maps driver names to factories taking a machine store path."""

    def __init__(self) -> None:
        self._factories: Dict[str, DriverFactory] = {}

    def register(self, name: str, factory: DriverFactory) -> None:
        if name in self._factories:
            raise ValueError(f"Driver already registered: {name}")
        self._factories[name] = factory
        logger.debug(f"Registered driver: {name}")

    def get(self, name: str) -> DriverFactory:
        try:
            return self._factories[name]
        except KeyError:
            raise KeyError(f"Unknown driver: {name}") from None

    def create(self, name: str, store_path: Union[str, Path], **kwargs) -> Any:
        """Build a new driver instance for the machine stored at store_path."""
        return self.get(name)(store_path, **kwargs)

    def names(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, name: str) -> bool:
        return name in self._factories
