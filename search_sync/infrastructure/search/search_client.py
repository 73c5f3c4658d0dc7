"""
Cliente mínimo de Azure AI Search REST API (sin SDKs externos).

Cubre:
- requests con Session reutilizable
- existencia / creación / borrado de índice
- indexado por batches (docs/index) con acción por documento
- backoff opcional para 429/5xx (por defecto sin reintentos: el reintento
  lo hace la siguiente iteración del loop)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import requests
from loguru import logger

from search_sync.domain.types import IndexOperation
from search_sync.infrastructure.search.index_schema import IndexDefinition
from search_sync.shared.exceptions import SinkRejectedError


@dataclass(frozen=True)
class SearchCredentials:
    endpoint: str
    api_key: str


class SearchApiError(RuntimeError):
    """Error de integración con el servicio de búsqueda."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SearchServiceClient:
    """
    Cliente HTTP del servicio de búsqueda.

    Importante:
    - No transforma documentos: recibe IndexOperation ya mapeadas.
    - Un 207 (Multi-Status) cuenta como falla del batch: algún documento
      no quedó aplicado.
    """

    def __init__(
        self,
        credentials: SearchCredentials,
        *,
        session: Optional[requests.Session] = None,
        api_version: str = "2023-11-01",
        timeout_s: float = 30,
        max_retries: int = 0,
        min_backoff_s: float = 0.8,
        max_backoff_s: float = 20.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._creds = credentials
        self._base_url = credentials.endpoint.rstrip("/")
        self._api_version = api_version
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._sleep = sleep
        self._session = session or requests.Session()

    def index_exists(self, index_name: str) -> bool:
        resp = self._request("GET", f"/indexes/{index_name}", allow_not_found=True)
        return resp.status_code != 404

    def create_index(self, definition: IndexDefinition) -> None:
        self._request("POST", "/indexes", json_body=definition.to_dict())
        logger.info(f"Índice '{definition.name}' creado")

    def delete_index(self, index_name: str) -> bool:
        resp = self._request("DELETE", f"/indexes/{index_name}", allow_not_found=True)
        return resp.status_code != 404

    def ensure_index(self, definition: IndexDefinition, *, recreate: bool = False) -> None:
        """Crea el índice si no existe (o lo recrea si recreate=True)."""
        if recreate and self.delete_index(definition.name):
            logger.warning(f"Índice '{definition.name}' borrado para recrearlo")
        if not self.index_exists(definition.name):
            logger.info(f"Creando índice '{definition.name}'...")
            self.create_index(definition)

    def index_documents(self, index_name: str, operations: Sequence[IndexOperation]) -> int:
        """
        Envía un batch a docs/index. Retorna la cantidad de documentos aplicados.

        Lanza SinkRejectedError si el batch no quedó completo.
        """
        body = {"value": [op.to_payload() for op in operations]}
        try:
            resp = self._request("POST", f"/indexes/{index_name}/docs/index", json_body=body)
        except SearchApiError as e:
            raise SinkRejectedError(str(e), status_code=e.status_code) from e
        except requests.RequestException as e:
            raise SinkRejectedError(f"Error de transporte hacia el servicio de búsqueda: {e}") from e

        if resp.status_code == 207:
            try:
                results = (resp.json() or {}).get("value") or []
                failed = [str(r.get("key")) for r in results if not r.get("status")]
            except (ValueError, AttributeError) as e:
                raise SinkRejectedError(
                    f"Respuesta 207 ilegible del servicio de búsqueda: {e}", status_code=207
                ) from e
            raise SinkRejectedError(
                f"{len(failed)} documentos rechazados en el batch",
                status_code=207,
                failed_keys=failed,
            )
        return len(operations)

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> requests.Response:
        """
        Request HTTP con backoff para 429/5xx.

        Estrategia:
        - 429: respeta Retry-After si existe, si no exponencial con jitter simple.
        - 5xx: exponencial con jitter.
        - 4xx (no 429): error inmediato (config/auth/documento mal).
        """
        url = f"{self._base_url}{path}"
        headers = {
            "api-key": self._creds.api_key,
            "Content-Type": "application/json",
        }
        params = {"api-version": self._api_version}

        for attempt in range(self._max_retries + 1):
            resp = self._session.request(
                method=method,
                url=url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self._timeout_s,
            )

            if 200 <= resp.status_code < 300:
                return resp
            if allow_not_found and resp.status_code == 404:
                return resp

            # Errores recuperables
            if resp.status_code == 429 or 500 <= resp.status_code < 600:
                if attempt >= self._max_retries:
                    raise SearchApiError(
                        f"Search error {resp.status_code} tras {attempt} reintentos: {resp.text}",
                        status_code=resp.status_code,
                    )

                retry_after = resp.headers.get("Retry-After")
                if retry_after:
                    try:
                        sleep_s = float(retry_after)
                    except ValueError:
                        sleep_s = self._min_backoff_s
                else:
                    # Exponencial simple + jitter proporcional
                    base = min(self._max_backoff_s, self._min_backoff_s * (2**attempt))
                    sleep_s = base + (0.15 * base)

                self._sleep(sleep_s)
                continue

            # Errores no recuperables
            raise SearchApiError(
                f"Search request falló {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )

        raise SearchApiError("Search request sin respuesta")


class SearchIndexSink:
    """IndexSink sobre Azure AI Search: nunca lanza, reporta True/False."""

    def __init__(self, client: SearchServiceClient, index_name: str) -> None:
        self._client = client
        self._index_name = index_name

    def apply_batch(self, batch: Sequence[IndexOperation]) -> bool:
        try:
            self._client.index_documents(self._index_name, batch)
            return True
        except SinkRejectedError as e:
            failed = f" (claves: {e.failed_keys[:10]})" if e.failed_keys else ""
            logger.error(f"Batch rechazado por '{self._index_name}': {e.message}{failed}")
            return False
