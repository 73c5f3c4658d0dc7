"""
Interfaz para aplicar batches de operaciones en el índice de búsqueda.

Este contrato existe para:
- Que el loop de sincronización no dependa del transporte HTTP.
- Facilitar tests unitarios con un sink en memoria.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from search_sync.domain.types import IndexOperation


class IndexSink(Protocol):
    """
    Destino de los documentos.

    Implementaciones:
    - Azure AI Search (REST).
    - Fake en memoria para tests.
    """

    def apply_batch(self, batch: Sequence[IndexOperation]) -> bool:
        """
        Aplica un batch completo.

        Reglas:
        - Debe ser un upsert idempotente por clave (nunca append).
        - Retorna True solo si el batch completo quedó aplicado; ante
          cualquier error retorna False (no lanza).
        """
