"""
Order events: program log parsing and field decoding.
"""

from spoutrelay.events.decoder import (
    FieldSchema,
    decode_buy_order_created,
    decode_event,
    decode_sell_order_created,
)
from spoutrelay.events.parser import EventParser, ParsedEvent

__all__ = [
    "EventParser",
    "ParsedEvent",
    "FieldSchema",
    "decode_event",
    "decode_buy_order_created",
    "decode_sell_order_created",
]
