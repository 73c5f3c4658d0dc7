"""
Definición del índice de búsqueda (campos y suggester).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class IndexField:
    name: str
    type: str
    key: bool = False
    searchable: bool = False
    filterable: bool = False
    sortable: bool = False
    facetable: bool = False
    retrievable: bool = True
    suggestions: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "key": self.key,
            "searchable": self.searchable,
            "filterable": self.filterable,
            "sortable": self.sortable,
            "facetable": self.facetable,
            "retrievable": self.retrievable,
        }


@dataclass(frozen=True)
class IndexDefinition:
    name: str
    fields: list[IndexField]
    suggester_name: str = "sg"

    @property
    def key_field(self) -> str:
        keys = [f.name for f in self.fields if f.key]
        if len(keys) != 1:
            raise ValueError(f"El índice '{self.name}' debe tener exactamente un campo clave")
        return keys[0]

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
        }
        source_fields = [f.name for f in self.fields if f.suggestions]
        if source_fields:
            body["suggesters"] = [
                {
                    "name": self.suggester_name,
                    "searchMode": "analyzingInfixMatching",
                    "sourceFields": source_fields,
                }
            ]
        return body


def catalog_index_definition(name: str = "catalog") -> IndexDefinition:
    """Índice del catálogo de productos."""
    return IndexDefinition(
        name=name,
        fields=[
            IndexField("productID", "Edm.String", key=True),
            IndexField("name", "Edm.String", searchable=True, sortable=True, suggestions=True),
            IndexField("productNumber", "Edm.String", searchable=True, suggestions=True),
            IndexField("color", "Edm.String", searchable=True, filterable=True, sortable=True, facetable=True),
            IndexField("standardCost", "Edm.Double"),
            IndexField("listPrice", "Edm.Double", filterable=True, sortable=True, facetable=True),
            IndexField("size", "Edm.String", searchable=True, filterable=True, sortable=True, facetable=True),
            IndexField("weight", "Edm.Double", filterable=True, facetable=True),
            IndexField("sellStartDate", "Edm.DateTimeOffset", filterable=True, retrievable=False),
            IndexField("sellEndDate", "Edm.DateTimeOffset", filterable=True, retrievable=False),
            IndexField("discontinuedDate", "Edm.DateTimeOffset", filterable=True),
            IndexField("categoryName", "Edm.String", searchable=True, filterable=True, facetable=True, suggestions=True),
            IndexField("modelName", "Edm.String", searchable=True, filterable=True, facetable=True, suggestions=True),
            IndexField("description", "Edm.String", searchable=True, filterable=True),
        ],
    )
