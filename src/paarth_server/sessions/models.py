"""Per-connection session state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, List, Literal, Mapping, Protocol, Tuple


class Transport(Protocol):
    """Bidirectional channel a session is bound to."""

    @property
    def is_open(self) -> bool:
        ...

    async def send_json(self, message: Mapping[str, Any]) -> None:
        ...

    async def close(self, code: int = 1000) -> None:
        ...


@dataclass(frozen=True)
class Turn:
    """One question/answer exchange."""

    user_text: str
    assistant_text: str
    verse_ids: Tuple[str, ...] = ()
    kind: Literal["audio", "text"] = "text"
    timestamp: float = field(default_factory=time.time)


@dataclass
class Session:
    """
    Server-side state for one connection.

    Only the SessionRegistry mutates these records. ``transport`` is a
    back-reference; the session never owns the channel.
    """

    id: str
    transport: Transport
    created_at: float
    last_activity_at: float
    turns: List[Turn] = field(default_factory=list)
    interrupt_count: int = 0

    def summary(self, now: float) -> dict:
        return {
            "id": self.id,
            "duration": now - self.created_at,
            "idle": now - self.last_activity_at,
            "question_count": len(self.turns),
            "interrupt_count": self.interrupt_count,
        }
