from __future__ import annotations

from typing import Dict, Type

from bulkdeploy.connectors.base import ConnectorInit, SolutionService


class ConnectorRegistry:
    """
    Registry + factory for solution connectors.

    Supports decorator registration:
        @registry.register("dataverse")
        class DataverseService: ...

    And factory instantiation that binds a parsed connection string:
        svc = registry.create(name="<masked connection string>", driver="dataverse", config=..., options=...)
    """

    def __init__(self) -> None:
        self._items: Dict[str, Type] = {}

    def register(self, driver: str):
        def deco(cls):
            self._items[driver.strip().lower()] = cls
            return cls
        return deco

    def get(self, driver: str):
        key = (driver or "").strip().lower()
        if key not in self._items:
            raise KeyError(f"Unknown connector driver: {driver}. Loaded: {self.list()}")
        return self._items[key]

    def list(self) -> list[str]:
        return sorted(self._items.keys())

    def create(self, *, name: str, driver: str, config: dict, options: dict | None = None) -> SolutionService:
        Cls = self.get(driver)
        return Cls(ConnectorInit(name=name, driver=driver, config=config, options=options or {}))


# Singleton registry used by core + plugins
REGISTRY = ConnectorRegistry()


def register_connector(driver: str):
    return REGISTRY.register(driver)

