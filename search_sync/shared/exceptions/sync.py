"""
Excepciones del ciclo de sincronización (origen SQL -> índice de búsqueda).

Taxonomía:
- SourceUnavailableError: falla la lectura de versión o el escaneo de filas.
- SinkRejectedError: el índice rechaza (o no recibe) un batch.
- MalformedRowError: una fila no se puede normalizar/etiquetar.

Ninguna se recupera dentro del ciclo: la iteración completa se reintenta
en la siguiente vuelta del loop.
"""
from typing import Any, Optional

from search_sync.shared.exceptions.base import SyncException


class SyncConfigError(SyncException):
    """Error de configuración del pipeline."""

    def __init__(self, message: str, missing: Optional[list[str]] = None):
        super().__init__(
            message=message,
            error_code="SYNC_CONFIG_ERROR",
            details={"missing": missing} if missing else None
        )


class SourceUnavailableError(SyncException):
    """La base de datos origen no respondió (conexión, permisos o query)."""

    def __init__(self, message: str, stage: str = "scan"):
        super().__init__(
            message=message,
            error_code="SOURCE_UNAVAILABLE",
            details={"stage": stage}
        )
        self.stage = stage


class SinkRejectedError(SyncException):
    """El servicio de búsqueda rechazó un batch o no se pudo contactar."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        failed_keys: Optional[list[str]] = None,
    ):
        details: dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if failed_keys:
            details["failed_keys"] = failed_keys
        super().__init__(
            message=message,
            error_code="SINK_REJECTED",
            details=details
        )
        self.status_code = status_code
        self.failed_keys = failed_keys or []


class MalformedRowError(SinkRejectedError):
    """Una fila trae un valor que no se puede convertir en documento."""

    def __init__(self, message: str, column: Optional[str] = None):
        super().__init__(message=message)
        self.error_code = "MALFORMED_ROW"
        if column:
            self.details["column"] = column
        self.column = column


class WatermarkStoreError(SyncException):
    """Error relacionado con el estado/watermark persistido."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="WATERMARK_STORE_ERROR")
