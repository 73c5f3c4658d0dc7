"""
Servicio de sincronización PostgreSQL -> Azure AI Search.

Diseño (resumen):
- Lee la versión actual de change tracking (antes de escanear filas)
- Enumera filas cambiadas desde el watermark comprometido (o full scan)
- Mapea cada fila a una operación mergeOrUpload por clave
- Envía batches acotados (1000 por defecto) al índice
- Avanza el watermark solo si TODOS los batches de la iteración salieron bien

Estrategia de idempotencia:
- Upsert por clave estable: re-enviar un ChangeSet no cambia el resultado.
- Si un batch falla, el watermark no se mueve y la siguiente iteración
  re-envía el ChangeSet completo (incluyendo batches ya aplicados).
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from loguru import logger

from search_sync.application.interfaces import ChangeSetSource, IndexSink
from search_sync.core.config import MAX_SEARCH_BATCH_SIZE, Settings
from search_sync.domain.table_config import build_index_operation, products_table_config
from search_sync.domain.types import IndexOperation, SyncResult, Watermark
from search_sync.infrastructure.search.search_client import (
    SearchCredentials,
    SearchIndexSink,
    SearchServiceClient,
)
from search_sync.infrastructure.sql_source.change_source import PostgresChangeSource
from search_sync.infrastructure.sql_source.watermark_store import (
    InMemoryWatermarkStore,
    PostgresWatermarkStore,
    WatermarkStore,
)
from search_sync.shared.exceptions import (
    MalformedRowError,
    SourceUnavailableError,
    WatermarkStoreError,
)


class SqlToSearchSync:
    """
    Worker único del pipeline. Una iteración termina completa antes de
    empezar la siguiente; el watermark es estado propio del worker.
    """

    def __init__(
        self,
        *,
        source: ChangeSetSource,
        sink: IndexSink,
        watermark_store: Optional[WatermarkStore] = None,
        batch_size: int = MAX_SEARCH_BATCH_SIZE,
        interval_s: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not 1 <= batch_size <= MAX_SEARCH_BATCH_SIZE:
            raise ValueError(f"batch_size debe estar entre 1 y {MAX_SEARCH_BATCH_SIZE}")
        self._source = source
        self._sink = sink
        self._store = watermark_store or InMemoryWatermarkStore()
        self._batch_size = batch_size
        self._interval_s = interval_s
        self._sleep = sleep
        self._committed: Watermark = self._store.load()

    @property
    def committed_watermark(self) -> Watermark:
        return self._committed

    def run_once(self) -> SyncResult:
        """
        Ejecuta una iteración completa.

        Nunca lanza por errores de origen o destino: quedan en SyncResult
        y el watermark queda intacto.
        """
        result = SyncResult(start_watermark=self._committed)
        try:
            self._store.mark_run_started()
        except WatermarkStoreError as e:
            logger.warning(f"No se pudo registrar el inicio de la iteración: {e.message}")

        try:
            self._run_iteration(result)
        except SourceUnavailableError as e:
            result.error = e.message
            logger.error(f"Origen no disponible ({e.stage}): {e.message}")

        if result.succeeded and result.candidate_version is not None:
            try:
                self._committed = self._store.commit(result.candidate_version)
            except WatermarkStoreError as e:
                result.error = e.message
                logger.error(f"No se pudo persistir el watermark: {e.message}")
        result.committed_watermark = self._committed

        if result.succeeded:
            logger.info(
                f"Sync completo: operaciones={result.operations}, batches={result.batches_sent}, "
                f"watermark={self._committed}"
            )
        else:
            logger.warning(
                f"Sync falló: operaciones={result.operations}, batches_fallidos={result.batches_failed}, "
                f"watermark sin cambios={self._committed}"
            )
        try:
            self._store.mark_run_finished(result.status, result.error)
        except WatermarkStoreError as e:
            logger.warning(f"No se pudo registrar el resultado de la iteración: {e.message}")
        return result

    def run_forever(self, *, max_iterations: Optional[int] = None) -> None:
        """
        Loop principal: iteración + espera fija. Sin condición de término
        salvo max_iterations (para one-shot/tests) o terminación externa.
        """
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            result = self.run_once()
            iteration += 1
            if max_iterations is not None and iteration >= max_iterations:
                break
            if result.succeeded:
                logger.info(f"Esperando {self._interval_s:g} segundos...")
            else:
                logger.info(f"Se reintentará en {self._interval_s:g} segundos...")
            self._sleep(self._interval_s)

    def _run_iteration(self, result: SyncResult) -> None:
        config = self._source.config
        change_set = self._source.compute_change_set(self._committed)
        result.candidate_version = change_set.version

        batch: list[IndexOperation] = []
        pending = 0
        batch_poisoned = False
        rows = change_set.rows
        try:
            for row in rows:
                pending += 1
                result.operations += 1
                try:
                    batch.append(build_index_operation(row, config))
                except MalformedRowError as e:
                    # El batch que contiene la fila cuenta como rechazado.
                    logger.error(f"Fila inválida: {e.message}")
                    batch_poisoned = True

                if pending >= self._batch_size:
                    self._flush(batch, result, poisoned=batch_poisoned)
                    batch = []
                    pending = 0
                    batch_poisoned = False

            if pending:
                self._flush(batch, result, poisoned=batch_poisoned)
        finally:
            close = getattr(rows, "close", None)
            if close is not None:
                close()

    def _flush(self, batch: list[IndexOperation], result: SyncResult, *, poisoned: bool) -> None:
        if poisoned:
            result.batches_failed += 1
            logger.warning(f"Batch de {len(batch)} operaciones descartado por fila inválida")
            return

        logger.info(f"Subiendo {len(batch)} cambios...")
        if self._sink.apply_batch(batch):
            result.batches_sent += 1
            result.batch_sizes.append(len(batch))
        else:
            result.batches_failed += 1


def build_from_settings(
    settings: Settings,
) -> tuple[SqlToSearchSync, SearchServiceClient, WatermarkStore]:
    """
    Constructor "oficial" del pipeline a partir de la configuración.

    Requiere: SEARCH_SERVICE_NAME (o SEARCH_ENDPOINT), SEARCH_API_KEY.
    """
    settings.validate_for_sync()

    table_config = products_table_config(settings.SOURCE_TABLE)
    source = PostgresChangeSource(
        settings.effective_database_url,
        table_config,
        propagate_deletes=settings.SYNC_PROPAGATE_DELETES,
    )
    client = SearchServiceClient(
        SearchCredentials(endpoint=settings.search_endpoint, api_key=settings.SEARCH_API_KEY),
        api_version=settings.SEARCH_API_VERSION,
        timeout_s=settings.SEARCH_TIMEOUT_S,
        max_retries=settings.SEARCH_MAX_RETRIES,
    )
    sink = SearchIndexSink(client, settings.SEARCH_INDEX_NAME)

    store: WatermarkStore
    if settings.WATERMARK_STORE == "postgres":
        store = PostgresWatermarkStore(
            settings.effective_database_url,
            source_table=table_config.table_name,
            target_index=settings.SEARCH_INDEX_NAME,
        )
    else:
        store = InMemoryWatermarkStore()

    service = SqlToSearchSync(
        source=source,
        sink=sink,
        watermark_store=store,
        batch_size=settings.SYNC_BATCH_SIZE,
        interval_s=settings.SYNC_INTERVAL_SECONDS,
    )
    return service, client, store
