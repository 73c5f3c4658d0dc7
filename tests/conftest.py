"""
Configuración de fixtures para pytest.

Fakes en memoria del origen (tabla con versiones de change tracking) y del
índice (upsert last-write-wins por clave).
"""
from __future__ import annotations

from typing import Any, Iterator, Optional, Sequence

import pytest

from search_sync.domain.table_config import ColumnMapping, SourceTableConfig
from search_sync.domain.types import (
    NO_PRIOR_SYNC,
    ChangeRow,
    ChangeSet,
    IndexAction,
    IndexOperation,
    Watermark,
)
from search_sync.shared.exceptions import SourceUnavailableError


def items_table_config() -> SourceTableConfig:
    return SourceTableConfig(
        table_name="items",
        key_column="id",
        columns=[
            ColumnMapping("id", "id"),
            ColumnMapping("name", "name"),
            ColumnMapping("price", "price"),
        ],
    )


class FakeChangeTable:
    """
    Tabla con change tracking en memoria.

    Cada escritura toma la siguiente versión global. El escaneo es perezoso:
    lo que se escriba entre la lectura de versión y el escaneo aparece.
    """

    def __init__(self, config: Optional[SourceTableConfig] = None) -> None:
        self.config = config or items_table_config()
        self.version: Watermark = 0
        self._rows: dict[str, tuple[Watermark, ChangeRow]] = {}
        self.fail_next_version_read = False
        self.change_set_calls: list[Watermark] = []

    def write(self, key: Any, **values: Any) -> Watermark:
        self.version += 1
        row = {"id": key, **values}
        self._rows[str(key)] = (self.version, row)
        return self.version

    def write_many(self, count: int, start: int = 1) -> None:
        for i in range(start, start + count):
            self.write(i, name=f"item-{i}", price=float(i))

    def compute_change_set(self, last_watermark: Watermark) -> ChangeSet:
        self.change_set_calls.append(last_watermark)
        if self.fail_next_version_read:
            self.fail_next_version_read = False
            raise SourceUnavailableError("conexión rechazada", stage="version")
        return ChangeSet(version=self.version, rows=self._scan(last_watermark))

    def _scan(self, last_watermark: Watermark) -> Iterator[ChangeRow]:
        for version, row in list(self._rows.values()):
            if last_watermark == NO_PRIOR_SYNC or version > last_watermark:
                yield dict(row)


class FakeIndexSink:
    """Índice en memoria: upsert por clave, falla en los batches indicados (1-based)."""

    def __init__(self, fail_on: Sequence[int] = ()) -> None:
        self.fail_on = set(fail_on)
        self.calls = 0
        self.batches: list[list[str]] = []
        self.documents: dict[str, dict[str, Any]] = {}

    def apply_batch(self, batch: Sequence[IndexOperation]) -> bool:
        self.calls += 1
        self.batches.append([op.key for op in batch])
        if self.calls in self.fail_on:
            return False
        for op in batch:
            if op.action == IndexAction.DELETE:
                self.documents.pop(op.key, None)
            else:
                self.documents[op.key] = dict(op.document)
        return True

    @property
    def batch_sizes(self) -> list[int]:
        return [len(b) for b in self.batches]


@pytest.fixture
def table() -> FakeChangeTable:
    return FakeChangeTable()


@pytest.fixture
def sink() -> FakeIndexSink:
    return FakeIndexSink()


@pytest.fixture
def make_sink():
    return FakeIndexSink
