"""Opaque pagination cursors for redemption history."""

from __future__ import annotations

import base64
import binascii
from datetime import datetime
from typing import Tuple
from uuid import UUID

from riselocal_api.core.clock import ensure_aware


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{ensure_aware(timestamp).isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts.

    Raises ``ValueError`` when the cursor was not produced by
    :func:`encode_time_uuid_cursor`.
    """

    try:
        raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
        timestamp_str, identifier_str = raw.split("|", 1)
        return ensure_aware(datetime.fromisoformat(timestamp_str)), UUID(identifier_str)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise ValueError("Invalid cursor") from exc


__all__ = ["decode_time_uuid_cursor", "encode_time_uuid_cursor"]
