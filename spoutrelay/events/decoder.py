"""
Order event decoder: loosely typed field bag → OrderEvent.

Field bags come from more than one encoder. The on-chain layout uses
snake_case names; client-side coders have historically produced camelCase.
FieldSchema picks how names are resolved:

    TOLERANT   either convention per field (first present wins, camelCase first)
    CAMEL_V1   camelCase only
    SNAKE_V1   snake_case only

With an explicit schema a field present only under the other convention
is a decode error, so a future naming change fails loudly instead of
being read as valid data.
"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from solders.pubkey import Pubkey

from spoutrelay.core.address import coerce_address
from spoutrelay.core.exceptions import EventDecodeError
from spoutrelay.core.models import (
    SIDE_BY_EVENT_NAME,
    U64_MAX,
    OrderEvent,
    OrderSide,
)


class FieldSchema(str, Enum):
    TOLERANT = "tolerant"
    CAMEL_V1 = "camel_v1"
    SNAKE_V1 = "snake_v1"


# canonical field → (camelCase, snake_case)
FIELD_NAMES: Dict[str, Tuple[str, str]] = {
    "user":             ("user", "user"),
    "ticker":           ("ticker", "ticker"),
    "usdc_amount":      ("usdcAmount", "usdc_amount"),
    "asset_amount":     ("assetAmount", "asset_amount"),
    "price":            ("price", "price"),
    "oracle_timestamp": ("oracleTimestamp", "oracle_timestamp"),
}

NUMERIC_FIELDS = ("usdc_amount", "asset_amount", "price", "oracle_timestamp")


def _candidates(field: str, schema: FieldSchema) -> Tuple[str, ...]:
    camel, snake = FIELD_NAMES[field]
    if schema is FieldSchema.CAMEL_V1:
        return (camel,)
    if schema is FieldSchema.SNAKE_V1:
        return (snake,)
    return (camel,) if camel == snake else (camel, snake)


def _read(fields: Mapping[str, Any], field: str, schema: FieldSchema, event_name: str) -> Any:
    for key in _candidates(field, schema):
        if key in fields and fields[key] is not None:
            return fields[key]
    raise EventDecodeError(
        f"Missing required field '{field}'",
        {"event": event_name, "schema": schema.value, "accepted": "|".join(_candidates(field, schema))},
    )


def to_u64(value: Any, field: str = "value") -> int:
    """
    Convert a numeric field to a Python int in [0, 2**64).

    Accepts int, decimal strings, 0x-prefixed hex strings (the JSON form of
    big-number objects) and anything implementing __int__.
    """
    if isinstance(value, bool):
        raise EventDecodeError(f"Field '{field}' must be numeric", {"value": value})

    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
        except ValueError as exc:
            raise EventDecodeError(
                f"Field '{field}' is not an integer", {"value": value}
            ) from exc
    elif hasattr(value, "__int__") and not isinstance(value, float):
        number = int(value)
    else:
        raise EventDecodeError(
            f"Field '{field}' must be an integer", {"type": type(value).__name__}
        )

    if number < 0 or number > U64_MAX:
        raise EventDecodeError(f"Field '{field}' out of u64 range", {"value": number})
    return number


def _to_address(value: Any, event_name: str) -> Pubkey:
    try:
        return coerce_address(value)
    except (TypeError, ValueError) as exc:
        raise EventDecodeError(
            f"Field 'user' is not a valid address: {exc}", {"event": event_name}
        ) from exc


def _decode(
    side:      OrderSide,
    fields:    Mapping[str, Any],
    schema:    FieldSchema,
    signature: Optional[str],
    log_index: int,
) -> OrderEvent:
    name = side.event_name
    if not isinstance(fields, Mapping):
        raise EventDecodeError("Event data must be a mapping", {"event": name})

    user   = _to_address(_read(fields, "user", schema, name), name)
    ticker = _read(fields, "ticker", schema, name)
    if not isinstance(ticker, str):
        raise EventDecodeError("Field 'ticker' must be a string", {"event": name})

    numbers = {
        field: to_u64(_read(fields, field, schema, name), field)
        for field in NUMERIC_FIELDS
    }

    return OrderEvent(
        side=      side,
        user=      user,
        ticker=    ticker,
        signature= signature,
        log_index= log_index,
        **numbers,
    )


def decode_buy_order_created(
    fields:    Mapping[str, Any],
    schema:    FieldSchema = FieldSchema.TOLERANT,
    signature: Optional[str] = None,
    log_index: int = 0,
) -> OrderEvent:
    return _decode(OrderSide.BUY, fields, schema, signature, log_index)


def decode_sell_order_created(
    fields:    Mapping[str, Any],
    schema:    FieldSchema = FieldSchema.TOLERANT,
    signature: Optional[str] = None,
    log_index: int = 0,
) -> OrderEvent:
    return _decode(OrderSide.SELL, fields, schema, signature, log_index)


def decode_event(
    name:      str,
    fields:    Mapping[str, Any],
    schema:    FieldSchema = FieldSchema.TOLERANT,
    signature: Optional[str] = None,
    log_index: int = 0,
) -> OrderEvent:
    """Decode any known order event by name. Unknown names raise EventDecodeError."""
    side = SIDE_BY_EVENT_NAME.get(name)
    if side is None:
        raise EventDecodeError("Unknown event", {"event": name})
    return _decode(side, fields, schema, signature, log_index)
