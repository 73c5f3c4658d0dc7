"""
Interfaz del origen de cambios.
"""

from __future__ import annotations

from typing import Protocol

from search_sync.domain.table_config import SourceTableConfig
from search_sync.domain.types import ChangeSet, Watermark


class ChangeSetSource(Protocol):
    """
    Produce un ChangeSet por iteración.

    Reglas:
    - La versión se lee antes de enumerar filas.
    - Las filas se entregan perezosamente (no se materializan).
    - Errores de conexión/query se lanzan como SourceUnavailableError.
    """

    @property
    def config(self) -> SourceTableConfig: ...

    def compute_change_set(self, last_watermark: Watermark) -> ChangeSet: ...
