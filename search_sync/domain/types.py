"""
Tipos y utilidades puras del pipeline SQL -> índice de búsqueda.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Optional
from uuid import UUID

# Watermark: versión de change tracking (entero, mayor = más nuevo).
Watermark = int

# Sin sync previo: el origen hace full scan de la tabla.
NO_PRIOR_SYNC: Watermark = -1

# Fila cambiada: nombre de columna -> escalar o None.
ChangeRow = dict[str, Any]

SEARCH_ACTION_KEY = "@search.action"

_SCALAR_TYPES = (str, bool, int, float, Decimal, date, time, UUID)


class DeletedRow(dict):
    """
    Fila borrada en el origen. Solo trae la columna clave.

    La emite el origen únicamente si la propagación de deletes está activada.
    """


class IndexAction(str, Enum):
    """Acciones de indexado del servicio de búsqueda."""

    UPLOAD = "upload"
    MERGE = "merge"
    MERGE_OR_UPLOAD = "mergeOrUpload"
    DELETE = "delete"


@dataclass
class ChangeSet:
    """
    Versión candidata + filas a aplicar antes de adoptarla.

    `rows` es un iterador perezoso: se consume una sola vez.
    """

    version: Watermark
    rows: Iterator[ChangeRow]


@dataclass(frozen=True)
class IndexOperation:
    """Documento listo para el batch de indexado, con su acción."""

    action: IndexAction
    key: str
    document: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {SEARCH_ACTION_KEY: self.action.value}
        payload.update(self.document)
        return payload


@dataclass
class SyncResult:
    """Resumen de una iteración del loop."""

    start_watermark: Watermark
    candidate_version: Optional[Watermark] = None
    committed_watermark: Optional[Watermark] = None
    operations: int = 0
    batches_sent: int = 0
    batches_failed: int = 0
    error: Optional[str] = None
    batch_sizes: list[int] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.batches_failed == 0

    @property
    def status(self) -> str:
        return "success" if self.succeeded else "failed"


def is_no_value(value: Any) -> bool:
    """
    True si el valor es el marcador "sin valor" del origen.

    En Postgres: NULL (llega como None) y NaN de numeric/double, que
    no se puede representar en JSON.
    """
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, Decimal) and value.is_nan():
        return True
    return False


def normalize_value(value: Any) -> Any:
    """Normaliza un valor leído de la base de datos."""
    if is_no_value(value):
        return None
    if isinstance(value, Decimal):
        return float(value)
    return value


def normalize_row(raw: dict[str, Any]) -> ChangeRow:
    return {column: normalize_value(value) for column, value in raw.items()}


def is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, _SCALAR_TYPES)
