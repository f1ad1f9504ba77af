"""Utility modules."""
from exam_api.utils.json_utils import dump_json_column, json_dump, json_load, load_json_column
from exam_api.utils.time_utils import as_utc, isoformat, parse_iso_timestamp, seconds_between, utc_now
from exam_api.utils.validation import validate_id

__all__ = [
    "dump_json_column",
    "json_dump",
    "json_load",
    "load_json_column",
    "as_utc",
    "isoformat",
    "parse_iso_timestamp",
    "seconds_between",
    "utc_now",
    "validate_id",
]
