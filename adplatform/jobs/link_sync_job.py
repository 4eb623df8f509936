"""Link-status sync job payload."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(slots=True)
class LinkSyncJob:
    user_id: int
    attempt: int = 1
    scheduled_at: float = field(default_factory=time.time)  # epoch seconds
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def key(self) -> str:
        """One outstanding sync per user; queues drop duplicates by this key."""
        return f"link_sync:{self.user_id}"

    def next_attempt(self) -> "LinkSyncJob":
        return LinkSyncJob(user_id=self.user_id, attempt=self.attempt + 1, correlation_id=self.correlation_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "attempt": self.attempt,
            "scheduled_at": self.scheduled_at,
            "correlation_id": self.correlation_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkSyncJob":
        return cls(
            user_id=int(data["user_id"]),
            attempt=int(data.get("attempt", 1)),
            scheduled_at=float(data.get("scheduled_at") or time.time()),
            correlation_id=str(data.get("correlation_id") or uuid.uuid4().hex),
        )


__all__ = ["LinkSyncJob"]
