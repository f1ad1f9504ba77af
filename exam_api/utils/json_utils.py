"""JSON serialization utilities."""
import json


def json_dump(payload: object) -> str:
    """Serialize object to compact JSON string."""
    return json.dumps(payload, ensure_ascii=False)


def json_load(data: str) -> object:
    """Deserialize JSON string to object."""
    return json.loads(data)


def load_json_column(raw: str | None, default: object) -> object:
    """Parse a JSON text column, returning default when empty or corrupt."""
    if raw is None or raw == "":
        return default
    try:
        return json_load(raw)
    except (json.JSONDecodeError, TypeError):
        return default


def dump_json_column(value: object) -> str | None:
    """Serialize a value for a JSON text column; None stays NULL."""
    if value is None:
        return None
    return json_dump(value)
