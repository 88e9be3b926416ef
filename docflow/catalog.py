"""
Docflow - Carrier catalog.

Read-only reference data describing the insurance companies documents can be
submitted to. Loaded from YAML:

    carriers:
      - id: migdal
        name: Migdal
        logo: "🏛️"
        methods: [email, portal, api]
"""

from pathlib import Path
from typing import Any, Iterable, Union

import yaml

from .exceptions import DocflowError, UnknownCarrierError
from .models import Carrier


class CatalogError(DocflowError):
    """Raised when a catalog file is missing or malformed."""

    pass


class CarrierCatalog:
    """Lookup of carriers by id. Never mutated after construction."""

    def __init__(self, carriers: Iterable[Carrier]):
        self._carriers: dict[str, Carrier] = {}
        for carrier in carriers:
            if carrier.id in self._carriers:
                raise CatalogError(f"Duplicate carrier id: {carrier.id}")
            self._carriers[carrier.id] = carrier

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CarrierCatalog":
        entries = data.get("carriers")
        if not isinstance(entries, list):
            raise CatalogError("Catalog must contain a 'carriers' list")
        try:
            return cls(Carrier.from_dict(entry) for entry in entries)
        except (KeyError, ValueError, TypeError) as e:
            raise CatalogError(f"Invalid carrier entry: {e}")

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "CarrierCatalog":
        path = Path(path)
        if not path.exists():
            raise CatalogError(f"Carrier catalog not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise CatalogError(f"Invalid YAML in {path}: {e}")

        if not isinstance(data, dict):
            raise CatalogError(f"Catalog root must be a mapping: {path}")
        return cls.from_dict(data)

    def get(self, company_id: str) -> Carrier:
        try:
            return self._carriers[company_id]
        except KeyError:
            raise UnknownCarrierError(company_id)

    def exists(self, company_id: str) -> bool:
        return company_id in self._carriers

    def all(self) -> list[Carrier]:
        return list(self._carriers.values())

    def __len__(self) -> int:
        return len(self._carriers)

    def __contains__(self, company_id: object) -> bool:
        return company_id in self._carriers
