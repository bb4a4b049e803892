"""Inbound WebSocket frames.

Unknown fields are ignored; an unknown `type` fails validation and the
client gets an "Invalid message format" error frame.
"""

from typing import Literal, Optional

from pydantic import Field

from muta.schemas.order import CamelModel


class ClientMessage(CamelModel):
    type: Literal["subscribe", "unsubscribe", "ping"]
    api_key: Optional[str] = Field(None, max_length=256)
