"""
spoutrelay/events/parser.py

Program log → raw event records.

The order program emits events as base64 Borsh payloads on
"Program data: " log lines (older builds used "Program log: "). Each
payload starts with an 8-byte discriminator:

    discriminator = SHA-256("event:" + EventName)[:8]

Only lines produced while the order program is the executing program
are considered: the parser tracks the invocation stack from
"Program <id> invoke [n]" / "Program <id> success|failed" lines so that
data logged by CPI callees with colliding discriminators is ignored.

Payload bodies are read with the borsh-construct layouts in
spoutrelay.core.layouts (ORDER_CREATED for both order events).
"""

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from construct import Construct, ConstructError
from solders.pubkey import Pubkey

from spoutrelay.core.layouts import ORDER_CREATED, event_discriminator

DATA_PREFIXES = ("Program data: ", "Program log: ")

_INVOKE_RE  = re.compile(r"^Program (\S+) invoke \[\d+\]$")
_RESULT_RE  = re.compile(r"^Program (\S+) (success|failed.*)$")


# Event name → body layout. The only events this relayer understands.
EVENT_LAYOUTS: Dict[str, Construct] = {
    "BuyOrderCreated":  ORDER_CREATED,
    "SellOrderCreated": ORDER_CREATED,
}


@dataclass
class ParsedEvent:
    """
    One event record found in a transaction's logs.

    data is the snake_case field bag; error is set instead when the
    discriminator matched but the payload could not be read.
    """
    name:  str
    data:  Dict[str, Any]
    index: int
    error: Optional[str] = None


class EventParser:
    """
    Extract known events emitted by one program from raw log lines.

    Usage:
        parser = EventParser(orders_program_id)
        for event in parser.parse_logs(tx.logs):
            ...
    """

    def __init__(self, program_id: Pubkey, layouts: Optional[Dict[str, Construct]] = None):
        self.program_id = str(program_id)
        self._layouts   = dict(layouts or EVENT_LAYOUTS)
        self._by_disc: Dict[bytes, str] = {
            event_discriminator(name): name for name in self._layouts
        }

    def parse_logs(self, logs: List[str]) -> Iterator[ParsedEvent]:
        stack: List[str] = []
        index = 0

        for line in logs or []:
            invoke = _INVOKE_RE.match(line)
            if invoke:
                stack.append(invoke.group(1))
                continue

            result = _RESULT_RE.match(line)
            if result:
                if stack:
                    stack.pop()
                continue

            if not stack or stack[-1] != self.program_id:
                continue

            payload = self._payload(line)
            if payload is None or len(payload) < 8:
                continue

            name = self._by_disc.get(payload[:8])
            if name is None:
                continue

            data, error = self._decode(name, payload[8:])
            yield ParsedEvent(name=name, data=data, index=index, error=error)
            index += 1

    @staticmethod
    def _payload(line: str) -> Optional[bytes]:
        for prefix in DATA_PREFIXES:
            if line.startswith(prefix):
                try:
                    return base64.b64decode(line[len(prefix):], validate=True)
                except (binascii.Error, ValueError):
                    # Plain-text msg!() output, not an event
                    return None
        return None

    def _decode(self, name: str, body: bytes) -> Tuple[Dict[str, Any], Optional[str]]:
        try:
            parsed = self._layouts[name].parse(body)
        except (ConstructError, UnicodeDecodeError, ValueError) as exc:
            return {}, str(exc)
        return {key: value for key, value in parsed.items() if not key.startswith("_")}, None
