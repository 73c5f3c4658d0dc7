"""
Configuración del sync (tabla origen -> índice destino).

Aquí se controla:
- tabla origen y su columna clave
- columnas proyectadas y el campo del índice de cada una
- transformaciones por columna
- construcción de la operación de indexado a partir de una fila

Este módulo no realiza I/O: solo define configuración y mapeo.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

from search_sync.domain.types import (
    ChangeRow,
    DeletedRow,
    IndexAction,
    IndexOperation,
    is_scalar,
)
from search_sync.shared.exceptions import MalformedRowError
from search_sync.shared.utils.datetime_utils import to_edm_datetime

Transform = Callable[[Any], Any]


@dataclass(frozen=True)
class ColumnMapping:
    """
    Define el mapeo de una columna SQL a un campo del índice.

    - source_column: nombre de la columna en Postgres
    - index_field: nombre del campo en el índice
    - transform: función opcional aplicada antes de serializar
    """

    source_column: str
    index_field: str
    transform: Optional[Transform] = None


@dataclass(frozen=True)
class SourceTableConfig:
    """
    Config de una tabla Postgres -> un índice de búsqueda.

    La columna clave debe estar incluida en `columns`; su valor se envía
    como string (los campos clave del índice son Edm.String).
    """

    table_name: str
    key_column: str
    columns: list[ColumnMapping]
    change_table: str = "change_tracking"
    # Tipo SQL de la clave: change_tracking guarda la clave como TEXT y se
    # castea a este tipo en el join para usar el índice de la tabla base.
    key_sql_type: str = "TEXT"

    def __post_init__(self) -> None:
        if self.key_column not in self.source_columns:
            raise ValueError(
                f"La columna clave '{self.key_column}' no está entre las columnas de '{self.table_name}'"
            )

    @property
    def source_columns(self) -> list[str]:
        return [c.source_column for c in self.columns]

    @property
    def key_field(self) -> str:
        for c in self.columns:
            if c.source_column == self.key_column:
                return c.index_field
        raise ValueError(self.key_column)


def products_table_config(table_name: str = "products") -> SourceTableConfig:
    """Catálogo de productos: columnas SQL -> campos del índice 'catalog'."""
    return SourceTableConfig(
        table_name=table_name,
        key_column="product_id",
        key_sql_type="INTEGER",
        columns=[
            ColumnMapping("product_id", "productID"),
            ColumnMapping("name", "name"),
            ColumnMapping("product_number", "productNumber"),
            ColumnMapping("color", "color"),
            ColumnMapping("standard_cost", "standardCost"),
            ColumnMapping("list_price", "listPrice"),
            ColumnMapping("size", "size"),
            ColumnMapping("weight", "weight"),
            ColumnMapping("sell_start_date", "sellStartDate"),
            ColumnMapping("sell_end_date", "sellEndDate"),
            ColumnMapping("discontinued_date", "discontinuedDate"),
            ColumnMapping("category_name", "categoryName"),
            ColumnMapping("model_name", "modelName"),
            ColumnMapping("description", "description"),
        ],
    )


def _to_document_value(column: str, value: Any) -> Any:
    if not is_scalar(value):
        raise MalformedRowError(
            f"Columna '{column}' con tipo no soportado: {type(value).__name__}",
            column=column,
        )
    if isinstance(value, date):
        return to_edm_datetime(value)
    if isinstance(value, (time, UUID)):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def build_index_operation(row: ChangeRow, config: SourceTableConfig) -> IndexOperation:
    """
    Convierte una fila en una operación de indexado.

    Reglas:
    - Filas normales -> mergeOrUpload con todos los campos mapeados
    - DeletedRow -> delete, solo con el campo clave
    - Determinista: misma fila -> misma operación (re-entrega idempotente)
    """
    raw_key = row.get(config.key_column)
    if raw_key is None or raw_key == "":
        raise MalformedRowError(
            f"Fila sin valor en la columna clave '{config.key_column}'",
            column=config.key_column,
        )
    key = str(raw_key)

    if isinstance(row, DeletedRow):
        return IndexOperation(
            action=IndexAction.DELETE,
            key=key,
            document={config.key_field: key},
        )

    document: dict[str, Any] = {}
    for m in config.columns:
        if m.source_column == config.key_column:
            document[m.index_field] = key
            continue
        value = row.get(m.source_column)
        if m.transform is not None:
            value = m.transform(value)
        document[m.index_field] = _to_document_value(m.source_column, value)

    return IndexOperation(action=IndexAction.MERGE_OR_UPLOAD, key=key, document=document)
