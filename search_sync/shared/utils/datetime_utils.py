"""
Utilidades de fechas para el pipeline.
"""
from datetime import date, datetime, timezone


def ensure_utc(dt: datetime) -> datetime:
    """
    Normaliza datetime a UTC (aware).

    Las columnas `timestamp without time zone` de Postgres llegan naive;
    se asume que ya están en UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_edm_datetime(value: date) -> str:
    """
    Serializa date/datetime al formato Edm.DateTimeOffset (ISO8601 con 'Z').

    Un `date` se interpreta como medianoche UTC.
    """
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return ensure_utc(value).isoformat().replace("+00:00", "Z")
