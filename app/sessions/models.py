from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

Role = Literal["user", "bot"]


@dataclass
class Turn:
    role: Role
    text: str
    timestamp: float = field(default_factory=time.time)
    page: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"role": self.role, "text": self.text, "timestamp": self.timestamp}
        if self.page is not None:
            out["page"] = self.page
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        role = str(data.get("role") or "user")
        if role not in ("user", "bot"):
            role = "user"
        return cls(
            role=role,  # type: ignore[arg-type]
            text=str(data.get("text") or ""),
            timestamp=float(data.get("timestamp") or 0.0),
            page=data.get("page"),
        )


@dataclass
class Session:
    """Conversation state for one widget session.

    Turns are append-only: callers add through ``append`` and never reorder or drop.
    """

    id: str
    turns: List[Turn] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    def append(self, role: Role, text: str, page: Optional[str] = None, timestamp: Optional[float] = None) -> Turn:
        turn = Turn(role=role, text=text, page=page, timestamp=time.time() if timestamp is None else timestamp)
        self.turns.append(turn)
        return turn

    def recent(self, n: int = 6) -> List[Turn]:
        if n <= 0:
            return []
        return list(self.turns[-n:])

    def user_turn_count(self) -> int:
        return sum(1 for t in self.turns if t.role == "user")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "turns": [t.to_dict() for t in self.turns],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        turns = [Turn.from_dict(t) for t in (data.get("turns") or []) if isinstance(t, dict)]
        return cls(
            id=str(data.get("id") or ""),
            turns=turns,
            created_at=float(data.get("created_at") or 0.0),
        )
