from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from utils.reference_loader import load_reference_dataset

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_DATASET = "list_match_fields"


@dataclass(frozen=True)
class FieldSpec:
    """Display and validation hints for one list-match field."""

    name: str
    category: str
    max_length: Optional[int] = None
    description: str = ""


@dataclass
class FieldCatalog:
    """Which extracted fields are matched against which ERP code list."""

    fields: Dict[str, FieldSpec] = field(default_factory=dict)
    category_aliases: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "FieldCatalog":
        fields: Dict[str, FieldSpec] = {}
        raw_fields = payload.get("fields") if isinstance(payload, Mapping) else None
        if isinstance(raw_fields, Mapping):
            for name, entry in raw_fields.items():
                key = str(name).strip()
                if not key:
                    continue
                entry = entry if isinstance(entry, Mapping) else {}
                max_length = entry.get("max_length")
                try:
                    max_length = int(max_length) if max_length is not None else None
                except (TypeError, ValueError):
                    logger.warning("Ignoring invalid max_length %r for field %s", max_length, key)
                    max_length = None
                fields[key] = FieldSpec(
                    name=key,
                    category=str(entry.get("category") or key),
                    max_length=max_length,
                    description=str(entry.get("description") or ""),
                )

        aliases: Dict[str, str] = {}
        raw_aliases = payload.get("category_aliases") if isinstance(payload, Mapping) else None
        if isinstance(raw_aliases, Mapping):
            for name, category in raw_aliases.items():
                if str(name).strip() and str(category).strip():
                    aliases[str(name).strip()] = str(category).strip()
        return cls(fields=fields, category_aliases=aliases)

    @classmethod
    def load(cls, dataset: str = DEFAULT_CATALOG_DATASET) -> "FieldCatalog":
        return cls.from_mapping(load_reference_dataset(dataset))

    def category_for(self, field_name: str) -> str:
        """Return the master-data category for ``field_name``.

        Unknown fields are their own category.
        """

        spec = self.fields.get(field_name)
        if spec is not None:
            return spec.category
        return self.category_aliases.get(field_name, field_name)

    def list_match_fields(self) -> List[str]:
        return list(self.fields)

    def get(self, field_name: str) -> Optional[FieldSpec]:
        return self.fields.get(field_name)


__all__ = ["DEFAULT_CATALOG_DATASET", "FieldCatalog", "FieldSpec"]
