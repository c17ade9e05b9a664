from datetime import datetime, timezone


def utcnow():
    return datetime.now(timezone.utc)


def to_iso(moment) -> str:
    """ISO-8601 UTC con milisegundos y sufijo Z (2026-01-31T12:00:00.000Z)."""
    return moment.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def now_iso() -> str:
    return to_iso(utcnow())


def parse_iso(value):
    """Fecha ISO → datetime aware en UTC; None si no se puede interpretar."""
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        try:
            moment = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
