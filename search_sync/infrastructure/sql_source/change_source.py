"""
Origen de cambios sobre PostgreSQL (psycopg v3).

Traduce "todo lo que cambió desde el watermark W" en una query concreta y
entrega las filas una a una desde un cursor server-side, sin cargar el
resultado completo en memoria.

Orden de lectura (importante para no perder updates):
1. Se lee la versión actual de change tracking.
2. Se escanean las filas, en la misma transacción REPEATABLE READ.
Lo que llegue después de la lectura de versión tiene versión mayor y
aparece en el siguiente ChangeSet (a costa de posibles duplicados).

No hay reintentos aquí: los reintenta la siguiente iteración del loop.
"""

from __future__ import annotations

from typing import Any, Iterator, Optional

import psycopg
from loguru import logger
from psycopg.rows import dict_row

from search_sync.domain.table_config import SourceTableConfig
from search_sync.domain.types import (
    NO_PRIOR_SYNC,
    ChangeRow,
    ChangeSet,
    DeletedRow,
    Watermark,
    normalize_row,
)
from search_sync.shared.exceptions import SourceUnavailableError

OPERATION_COLUMN = "__sys_change_operation"

CURRENT_VERSION_SQL = (
    "SELECT COALESCE(MAX(sys_change_version), 0) AS version FROM change_tracking"
)


class PostgresChangeSource:
    """
    Origen de ChangeSets para una tabla con change tracking.

    - Sin sync previo (NO_PRIOR_SYNC): full scan de la tabla.
    - Con watermark: join entre change_tracking y la tabla, solo operaciones
      I/U. Con propagate_deletes también D (emitidas como DeletedRow).
    """

    def __init__(
        self,
        dsn: str,
        config: SourceTableConfig,
        *,
        propagate_deletes: bool = False,
        fetch_size: int = 500,
        cursor_name: str = "search_sync_changes",
    ) -> None:
        self._dsn = dsn
        self._config = config
        self._propagate_deletes = propagate_deletes
        self._fetch_size = fetch_size
        self._cursor_name = cursor_name

    @property
    def config(self) -> SourceTableConfig:
        return self._config

    def connect(self) -> psycopg.Connection:
        """
        Abre conexión de solo lectura en REPEATABLE READ.
        La versión y el escaneo comparten el mismo snapshot.
        """
        try:
            conn = psycopg.connect(self._dsn, row_factory=dict_row)
        except psycopg.OperationalError as e:
            raise SourceUnavailableError(
                f"No se pudo conectar a la base de datos origen: {e}", stage="connect"
            ) from e
        conn.isolation_level = psycopg.IsolationLevel.REPEATABLE_READ
        conn.read_only = True
        return conn

    def current_version(self, conn: psycopg.Connection) -> Watermark:
        with conn.cursor() as cur:
            cur.execute(CURRENT_VERSION_SQL)
            row = cur.fetchone()
        if not row or row.get("version") is None:
            return 0
        return int(row["version"])

    def full_scan_query(self) -> str:
        cfg = self._config
        columns = [
            f'CAST(P."{c}" AS TEXT) AS "{c}"' if c == cfg.key_column else f'P."{c}"'
            for c in cfg.source_columns
        ]
        return (
            f"SELECT {', '.join(columns)} "
            f'FROM "{cfg.table_name}" AS P '
            f'ORDER BY P."{cfg.key_column}"'
        )

    def changes_query(self) -> str:
        cfg = self._config
        columns = [
            f'CT.row_key AS "{c}"' if c == cfg.key_column else f'P."{c}"'
            for c in cfg.source_columns
        ]
        operations = "('I', 'U', 'D')" if self._propagate_deletes else "('I', 'U')"
        return (
            f"SELECT {', '.join(columns)}, "
            f'CT.sys_change_operation AS "{OPERATION_COLUMN}" '
            f'FROM "{cfg.change_table}" AS CT '
            f'LEFT OUTER JOIN "{cfg.table_name}" AS P '
            f'ON P."{cfg.key_column}" = CAST(CT.row_key AS {cfg.key_sql_type}) '
            f"WHERE CT.table_name = %s "
            f"AND CT.sys_change_version > %s "
            f"AND CT.sys_change_operation IN {operations} "
            f"ORDER BY CT.sys_change_version"
        )

    def enumerate_changes(
        self, conn: psycopg.Connection, last_watermark: Watermark
    ) -> Iterator[ChangeRow]:
        """
        Itera las filas cambiadas desde last_watermark.

        Generator: la query se ejecuta al pedir la primera fila y el cursor
        server-side trae `fetch_size` filas por vuelta.
        """
        if last_watermark < NO_PRIOR_SYNC:
            raise ValueError(f"Watermark inválido: {last_watermark}")

        params: Optional[tuple[Any, ...]]
        if last_watermark == NO_PRIOR_SYNC:
            sql = self.full_scan_query()
            params = None
            logger.info(f"Sin sync previo: full scan de '{self._config.table_name}'")
        else:
            sql = self.changes_query()
            params = (self._config.table_name, last_watermark)
            logger.info(
                f"Query diferencial sobre '{self._config.table_name}' (version > {last_watermark})"
            )

        with conn.cursor(name=self._cursor_name) as cur:
            cur.itersize = self._fetch_size
            cur.execute(sql, params)
            for raw in cur:
                yield self._to_change_row(raw)

    def compute_change_set(self, last_watermark: Watermark) -> ChangeSet:
        """
        Abre la unidad de trabajo: lee la versión primero y devuelve las filas
        como iterador perezoso. La conexión se cierra al agotar (o cerrar) el
        iterador, o si falla la lectura de versión.
        """
        conn = self.connect()
        try:
            version = self.current_version(conn)
        except psycopg.Error as e:
            conn.close()
            raise SourceUnavailableError(
                f"No se pudo leer la versión de change tracking: {e}", stage="version"
            ) from e
        except BaseException:
            conn.close()
            raise

        return ChangeSet(version=version, rows=self._stream(conn, last_watermark))

    def _stream(self, conn: psycopg.Connection, last_watermark: Watermark) -> Iterator[ChangeRow]:
        try:
            yield from self.enumerate_changes(conn, last_watermark)
        except psycopg.Error as e:
            raise SourceUnavailableError(
                f"Falló el escaneo de cambios: {e}", stage="scan"
            ) from e
        finally:
            conn.close()

    def _to_change_row(self, raw: dict[str, Any]) -> ChangeRow:
        operation = raw.pop(OPERATION_COLUMN, None)
        if operation == "D":
            key = self._config.key_column
            return DeletedRow({key: raw.get(key)})
        return normalize_row(raw)
