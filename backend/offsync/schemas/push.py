"""Push message envelope shared by the notifier and the WebSocket layer."""

import time
from typing import Any
from typing import Dict
from typing import Optional

from pydantic import BaseModel
from pydantic import Field

PROTOCOL_VERSION = 1


class Envelope(BaseModel):
    """Unified envelope for every message pushed to clients."""

    v: int = Field(default=PROTOCOL_VERSION, description="Protocol version")
    type: str = Field(description="Message type identifier")
    topic: str = Field(description="Topic routing string")
    ts: int = Field(description="Timestamp in milliseconds since epoch")
    user_id: Optional[int] = Field(default=None, description="Recipient, unset for broadcasts")
    data: Dict[str, Any] = Field(description="Message payload")

    @classmethod
    def create(
        cls,
        message_type: str,
        topic: str,
        data: Dict[str, Any],
        user_id: Optional[int] = None,
    ) -> "Envelope":
        return cls(
            type=message_type.lower(),
            topic=topic,
            data=data,
            user_id=user_id,
            ts=int(time.time() * 1000),
        )


def is_envelope(message: Any) -> bool:
    return isinstance(message, dict) and "v" in message and "topic" in message and "ts" in message


__all__ = ["Envelope", "PROTOCOL_VERSION", "is_envelope"]
