"""
Persistencia del watermark (versión de change tracking ya sincronizada).

- InMemoryWatermarkStore: por defecto; vive lo que vive el proceso. Al
  reiniciar se hace full load de nuevo.
- PostgresWatermarkStore: tabla sync_state, para retomar donde quedó.

Ambos respetan la monotonía: nunca se guarda una versión menor a la actual.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg
from loguru import logger
from psycopg.rows import dict_row

from search_sync.domain.types import NO_PRIOR_SYNC, Watermark
from search_sync.shared.exceptions import WatermarkStoreError


class WatermarkStore(ABC):
    """Contrato de persistencia del watermark."""

    @abstractmethod
    def load(self) -> Watermark:
        """Retorna el watermark comprometido (NO_PRIOR_SYNC si no hay)."""

    @abstractmethod
    def commit(self, version: Watermark) -> Watermark:
        """Avanza el watermark. Retorna el valor efectivo tras el commit."""

    def mark_run_started(self) -> None:
        """Registra el inicio de la iteración (opcional)."""

    def mark_run_finished(self, status: str, error: Optional[str]) -> None:
        """Registra el resultado de la iteración (opcional)."""


class InMemoryWatermarkStore(WatermarkStore):
    def __init__(self, initial: Watermark = NO_PRIOR_SYNC) -> None:
        self._version = initial

    def load(self) -> Watermark:
        return self._version

    def commit(self, version: Watermark) -> Watermark:
        if version < self._version:
            logger.warning(
                f"Se ignora watermark {version}: menor al actual {self._version}"
            )
            return self._version
        self._version = version
        return self._version


class PostgresWatermarkStore(WatermarkStore):
    """
    Estado persistido por (tabla origen, índice destino) en la tabla sync_state.

    Cada operación abre su propia conexión; el lock de worker usa una
    conexión dedicada que se mantiene abierta mientras el proceso corre.
    """

    def __init__(self, dsn: str, *, source_table: str, target_index: str) -> None:
        self._dsn = dsn
        self._source_table = source_table
        self._target_index = target_index
        self._lock_conn: Optional[psycopg.Connection] = None
        self._lock_key: Optional[int] = None

    def connect(self) -> psycopg.Connection:
        """Abre conexión (autocommit False). El caller controla commits."""
        return psycopg.connect(self._dsn, row_factory=dict_row)

    @contextmanager
    def _unit_of_work(self) -> Iterator[psycopg.Connection]:
        """Conexión para una operación; errores de psycopg -> WatermarkStoreError."""
        try:
            with self.connect() as conn:
                yield conn
        except psycopg.Error as e:
            raise WatermarkStoreError(f"Error accediendo a sync_state: {e}") from e

    def ensure_sync_state_table(self, conn: psycopg.Connection) -> None:
        with conn.cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_state (
                    source_table          TEXT        NOT NULL,
                    target_index          TEXT        NOT NULL,
                    last_version          BIGINT      NOT NULL DEFAULT -1,
                    last_run_started_at   TIMESTAMPTZ NULL,
                    last_run_completed_at TIMESTAMPTZ NULL,
                    last_run_status       TEXT        NULL,
                    last_run_error        TEXT        NULL,
                    updated_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
                    PRIMARY KEY (source_table, target_index)
                );
                """
            )

    def load(self) -> Watermark:
        with self._unit_of_work() as conn:
            self.ensure_sync_state_table(conn)
            with conn.cursor() as cur:
                # Inicialización explícita con el centinela
                cur.execute(
                    """
                    INSERT INTO sync_state (source_table, target_index)
                    VALUES (%s, %s)
                    ON CONFLICT (source_table, target_index) DO NOTHING
                    """,
                    (self._source_table, self._target_index),
                )
                cur.execute(
                    """
                    SELECT last_version
                    FROM sync_state
                    WHERE source_table = %s
                      AND target_index = %s
                    """,
                    (self._source_table, self._target_index),
                )
                row = cur.fetchone()
            conn.commit()

        if not row:
            raise WatermarkStoreError("No se pudo inicializar sync_state")
        return int(row["last_version"])

    def commit(self, version: Watermark) -> Watermark:
        with self._unit_of_work() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE sync_state
                    SET last_version = %s,
                        updated_at = now()
                    WHERE source_table = %s
                      AND target_index = %s
                      AND last_version <= %s
                    RETURNING last_version
                    """,
                    (version, self._source_table, self._target_index, version),
                )
                row = cur.fetchone()
            conn.commit()

        if not row:
            logger.warning(
                f"sync_state no avanzó a {version} (valor persistido mayor o fila inexistente)"
            )
            return self.load()
        return int(row["last_version"])

    def mark_run_started(self) -> None:
        with self._unit_of_work() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE sync_state
                    SET last_run_started_at = now(),
                        updated_at = now()
                    WHERE source_table = %s
                      AND target_index = %s
                    """,
                    (self._source_table, self._target_index),
                )
            conn.commit()

    def mark_run_finished(self, status: str, error: Optional[str]) -> None:
        with self._unit_of_work() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE sync_state
                    SET last_run_completed_at = now(),
                        last_run_status = %s,
                        last_run_error = %s,
                        updated_at = now()
                    WHERE source_table = %s
                      AND target_index = %s
                    """,
                    (
                        status,
                        error[:2000] if error else None,
                        self._source_table,
                        self._target_index,
                    ),
                )
            conn.commit()

    def try_acquire_worker_lock(self, lock_key: int) -> bool:
        """
        Evita dos workers simultáneos sobre la misma tabla/índice.
        El lock es de sesión: se libera al cerrar la conexión.
        """
        if self._lock_conn is not None:
            return True
        conn = psycopg.connect(self._dsn, row_factory=dict_row, autocommit=True)
        with conn.cursor() as cur:
            cur.execute("SELECT pg_try_advisory_lock(%s) AS locked", (lock_key,))
            row = cur.fetchone()
        if not (row and row.get("locked")):
            conn.close()
            return False
        self._lock_conn = conn
        self._lock_key = lock_key
        return True

    def release_worker_lock(self) -> None:
        if self._lock_conn is None:
            return
        try:
            with self._lock_conn.cursor() as cur:
                cur.execute("SELECT pg_advisory_unlock(%s)", (self._lock_key,))
        finally:
            self._lock_conn.close()
            self._lock_conn = None
            self._lock_key = None


def stable_lock_key(namespace: str, name: str) -> int:
    """
    Genera un lock key reproducible para pg_advisory_lock.

    hash() no es estable entre procesos; sumatoria simple de bytes
    (suficiente para lock key, no para crypto).
    """
    raw = (namespace + ":" + name).encode("utf-8")
    return int(sum(raw) % (2**31 - 1))
