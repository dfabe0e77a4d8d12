"""Mapping model and snapshot serialization for the URL shortener.

This module defines the in-memory record behind every short code and the
adapter used to read and write the JSON snapshot file.

Data Model Layout
=================
::
    urlMappings.json (JSON array)
    └─ {
         "originalUrl":  str,
         "shortCode":    str (10 chars, unique),
         "createdAt":    ISO-8601 timestamp,
         "acknowledged": bool,
         "expiresAt":    ISO-8601 timestamp
       }

How to Use
===========
**Step 1 — Create a mapping**::
    mapping = URLMapping.create("abc123XYZ0", "https://example.com", lifetime)

**Step 2 — Serialize the index**::
    data = dump_snapshot(mappings.values())

**Step 3 — Load the index**::
    records = load_snapshot_records(path.read_bytes())
    mappings = [URLMapping.model_validate(r) for r in records]

Key Behaviours
===============
- Field names are snake_case in Python and camelCase on disk.
- Naive timestamps read from disk are treated as UTC.
- ``acknowledged`` only ever moves from False to True.

Classes:
    URLMapping:  One short code with its target URL and lifecycle metadata.
"""

import datetime
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

__all__ = ["URLMapping", "dump_snapshot", "load_snapshot_records", "utcnow"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class URLMapping(BaseModel):
    short_code: str = Field(..., alias="shortCode")
    original_url: str = Field(..., alias="originalUrl")
    created_at: datetime.datetime = Field(..., alias="createdAt")
    expires_at: datetime.datetime = Field(..., alias="expiresAt")
    acknowledged: bool = False

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("created_at", "expires_at")
    @classmethod
    def ensure_timezone(cls, v: datetime.datetime) -> datetime.datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=datetime.timezone.utc)
        return v

    @classmethod
    def create(
        cls,
        short_code: str,
        original_url: str,
        lifetime: datetime.timedelta,
        now: datetime.datetime | None = None,
    ) -> "URLMapping":
        created_at = now or utcnow()
        return cls(
            short_code=short_code,
            original_url=original_url,
            created_at=created_at,
            expires_at=created_at + lifetime,
            acknowledged=False,
        )

    def is_expired(self, now: datetime.datetime) -> bool:
        return now > self.expires_at


_SNAPSHOT_ADAPTER = TypeAdapter(list[URLMapping])
_RECORDS_ADAPTER = TypeAdapter(list[Any])


def dump_snapshot(mappings: Iterable[URLMapping]) -> bytes:
    """Serialize mappings as the on-disk JSON array."""
    return _SNAPSHOT_ADAPTER.dump_json(list(mappings), by_alias=True, indent=2)


def load_snapshot_records(data: bytes | str) -> list[Any]:
    """Parse the on-disk JSON array without validating individual records.

    Raises:
        pydantic.ValidationError: If the content is not a JSON array.
    """
    return _RECORDS_ADAPTER.validate_json(data)
