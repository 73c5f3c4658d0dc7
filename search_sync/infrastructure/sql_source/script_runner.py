"""
Ejecución de scripts SQL de aprovisionamiento (tabla + change tracking).
"""

from __future__ import annotations

import re
from pathlib import Path

import psycopg
from loguru import logger

SQL_DIR = Path(__file__).resolve().parent / "sql"
CREATE_TABLE_SCRIPT = SQL_DIR / "create_table.sql"
ADD_CHANGE_TRACKING_SCRIPT = SQL_DIR / "add_change_tracking.sql"

# Separador de batches: una línea que solo contiene GO.
_GO_SEPARATOR = re.compile(r"^\s*GO\s*$", re.MULTILINE | re.IGNORECASE)


def split_sql_batches(script: str) -> list[str]:
    """Divide el script en batches por líneas GO, descartando los vacíos."""
    return [chunk.strip() for chunk in _GO_SEPARATOR.split(script) if chunk.strip()]


def execute_sql_script(path: Path, dsn: str) -> int:
    """
    Ejecuta el script en una sola transacción. Retorna el número de batches.
    Cualquier error hace rollback y se propaga.
    """
    batches = split_sql_batches(Path(path).read_text(encoding="utf-8"))
    logger.info(f"Ejecutando {path.name} ({len(batches)} batches)")

    with psycopg.connect(dsn) as conn:
        with conn.cursor() as cur:
            for batch in batches:
                cur.execute(batch)
        conn.commit()
    return len(batches)


def provision_source(dsn: str) -> None:
    """Crea la tabla de productos y habilita change tracking sobre ella."""
    execute_sql_script(CREATE_TABLE_SCRIPT, dsn)
    execute_sql_script(ADD_CHANGE_TRACKING_SCRIPT, dsn)
    logger.success("Base de datos origen aprovisionada")
