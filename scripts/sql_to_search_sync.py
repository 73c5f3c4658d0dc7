"""
CLI: PostgreSQL -> Azure AI Search (sync incremental por change tracking).

Uso recomendado:
  - Ejecutar como servicio (systemd / contenedor): el loop no termina solo.
  - Con --once se puede correr como job (cron) y usar el exit code.

Variables de entorno requeridas:
  - SEARCH_SERVICE_NAME (o SEARCH_ENDPOINT)
  - SEARCH_API_KEY
  - SOURCE_DATABASE_URL (o SOURCE_DATABASE_HOST/PORT/USER/PASSWORD/NAME)

Ejecución:
  python scripts/sql_to_search_sync.py
  python scripts/sql_to_search_sync.py --once
  python scripts/sql_to_search_sync.py --provision-db
  python scripts/sql_to_search_sync.py --recreate-index
  python scripts/sql_to_search_sync.py --print-index-definition
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# Permite ejecutar este script desde cualquier cwd sin instalar el paquete.
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

# Cargar .env antes de importar la configuración (instancia global `settings`).
load_dotenv(_REPO_ROOT / ".env", override=False)

from search_sync.application.sync_service import build_from_settings
from search_sync.core.config import settings
from search_sync.core.logging import configure_logging
from search_sync.infrastructure.search.index_schema import catalog_index_definition
from search_sync.infrastructure.sql_source.script_runner import provision_source
from search_sync.infrastructure.sql_source.watermark_store import (
    PostgresWatermarkStore,
    stable_lock_key,
)
from search_sync.shared.exceptions import SyncException


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sincroniza cambios de una tabla PostgreSQL hacia un índice de búsqueda."
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Ejecuta una sola iteración (exit code 0 si salió bien, 1 si falló).",
    )
    parser.add_argument(
        "--provision-db",
        action="store_true",
        help="Crea la tabla de productos y el change tracking antes de sincronizar.",
    )
    parser.add_argument(
        "--recreate-index",
        action="store_true",
        help="Borra y vuelve a crear el índice antes de sincronizar.",
    )
    parser.add_argument(
        "--print-index-definition",
        action="store_true",
        help="Solo imprime el JSON del índice (no ejecuta sync).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.print_index_definition:
        definition = catalog_index_definition(settings.SEARCH_INDEX_NAME)
        print(json.dumps(definition.to_dict(), indent=2))
        return 0

    configure_logging(settings)

    try:
        service, client, store = build_from_settings(settings)
    except SyncException as e:
        logger.error(e.message)
        return 2

    if args.provision_db:
        provision_source(settings.effective_database_url)

    client.ensure_index(
        catalog_index_definition(settings.SEARCH_INDEX_NAME),
        recreate=args.recreate_index,
    )

    if isinstance(store, PostgresWatermarkStore):
        lock_key = stable_lock_key("search_sync", f"{settings.SOURCE_TABLE}:{settings.SEARCH_INDEX_NAME}")
        if not store.try_acquire_worker_lock(lock_key):
            logger.error("Otro worker ya está sincronizando esta tabla/índice")
            return 3

    try:
        if args.once:
            result = service.run_once()
            return 0 if result.succeeded else 1

        logger.info(
            f"Iniciando sync '{settings.SOURCE_TABLE}' -> '{settings.SEARCH_INDEX_NAME}' "
            f"(cada {settings.SYNC_INTERVAL_SECONDS:g}s, batch={settings.SYNC_BATCH_SIZE})"
        )
        service.run_forever()
    except KeyboardInterrupt:
        logger.info("Sync detenido por el usuario")
    finally:
        if isinstance(store, PostgresWatermarkStore):
            store.release_worker_lock()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
