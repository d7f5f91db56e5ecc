"""
Serialization utilities for the swap quote engine.

Provides JSON encoding for Decimal amounts, enums, frozen dataclasses and
large integers (EVM base-unit amounts, gas values).

Usage:
    from shared.serialization_utils import DecimalEncoder
    json.dumps(quote, cls=DecimalEncoder)
"""

import json
from dataclasses import fields, is_dataclass
from decimal import Decimal
from enum import Enum
from json import JSONEncoder
from typing import Any


class DecimalEncoder(JSONEncoder):
    """
    JSON encoder for engine types.

    Decimals are emitted as strings so amounts keep full precision.
    Integers beyond the IEEE 754 safe range are emitted as strings too.
    """

    # IEEE 754 double precision safe integer limit
    _MAX_SAFE_INTEGER = 2**53 - 1

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, bytes):
            return "0x" + obj.hex()
        return super().default(obj)

    def encode(self, obj: Any) -> str:
        return super().encode(self._normalize(obj))

    def iterencode(self, obj: Any, _one_shot: bool = False) -> Any:
        return super().iterencode(self._normalize(obj), _one_shot)

    def _normalize(self, obj: Any) -> Any:
        """Recursively expand dataclasses and stringify unsafe integers."""
        if is_dataclass(obj) and not isinstance(obj, type):
            return {f.name: self._normalize(getattr(obj, f.name)) for f in fields(obj)}
        if isinstance(obj, dict):
            return {str(k): self._normalize(v) for k, v in obj.items()}
        if isinstance(obj, (list, tuple)):
            return [self._normalize(item) for item in obj]
        if isinstance(obj, bool):
            return obj
        if isinstance(obj, int) and abs(obj) > self._MAX_SAFE_INTEGER:
            return str(obj)
        return obj


def dumps(obj: Any, **kwargs: Any) -> str:
    """``json.dumps`` with ``DecimalEncoder``."""
    return json.dumps(obj, cls=DecimalEncoder, **kwargs)
