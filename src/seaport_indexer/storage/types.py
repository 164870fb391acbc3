"""Unsigned 256-bit integer SQLAlchemy type.

On-chain amounts (wei prices, gas prices, cumulative volumes) are uint256.
PostgreSQL stores them exactly as NUMERIC(78, 0). SQLite has no exact wide
numeric type, so values are kept as decimal text there and converted back to
Python ``int`` on load.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy.types import Numeric, String, TypeDecorator

UINT256_MAX = 2**256 - 1


class Uint256(TypeDecorator):
    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(78))
        return dialect.type_descriptor(Numeric(78, 0))

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, Decimal, str)):
            raise TypeError(f"Uint256 value must be an integer, got {type(value).__name__}")
        as_int = int(value)
        if as_int < 0 or as_int > UINT256_MAX:
            raise ValueError(f"Uint256 value out of range: {as_int}")
        if dialect.name == "sqlite":
            return str(as_int)
        return Decimal(as_int)

    def process_result_value(self, value: Any, dialect: Any) -> int | None:  # noqa: ARG002
        if value is None:
            return None
        return int(value)
