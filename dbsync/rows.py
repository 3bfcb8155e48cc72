import base64
import json
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
from uuid import UUID

import brotli

from . import codec
from .exceptions import PayloadError


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, timedelta):
        return value.total_seconds()
    return str(value)


def encode_row(row: Mapping[str, Any]) -> str:
    """Serialize a row to compact JSON, keeping the source's column order."""
    return json.dumps(
        dict(row),
        default=_json_default,
        ensure_ascii=False,
        separators=(",", ":"),
    )


def decode_row(payload: Optional[bytes]) -> Dict[str, Any]:
    try:
        text = codec.decode(payload)
        return json.loads(text) if text else {}
    except (brotli.error, ValueError) as exc:
        raise PayloadError(f"Cannot decode cached row: {exc}") from exc
