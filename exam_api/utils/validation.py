"""Validation utilities."""
from fastapi import HTTPException


def validate_id(name: str, value: str) -> str:
    """Validate ID string (non-empty, no separators)."""
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{name} is required")
    cleaned = value.strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail=f"{name} is required")
    if len(cleaned) > 64 or "/" in cleaned or "\\" in cleaned:
        raise HTTPException(status_code=400, detail=f"Invalid {name}")
    return cleaned
