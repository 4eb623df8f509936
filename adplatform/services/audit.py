"""Best-effort audit emission.

Audit storage lives outside this service; we hand events to the business
event log. A failure to emit is logged and never undoes the state change that
produced the event.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from adplatform.utils import get_logger, log_business_event

logger = get_logger(__name__)

AuditSink = Callable[[str, Dict[str, Any], Optional[int], Optional[str]], None]


def _default_sink(event_type: str, details: Dict[str, Any], user_id: Optional[int], request_id: Optional[str]) -> None:
    log_business_event(event_type, details, user_id=user_id, request_id=request_id)


class AuditTrail:
    def __init__(self, sink: AuditSink = _default_sink, request_id: Optional[str] = None):
        self._sink = sink
        self.request_id = request_id

    def status_changed(
        self,
        resource: str,
        resource_id: int,
        old_status: Any,
        new_status: Any,
        actor: Optional[int | str],
        **extra: Any,
    ) -> None:
        details = {
            "resource": resource,
            "resource_id": resource_id,
            "old_status": getattr(old_status, "value", old_status),
            "new_status": getattr(new_status, "value", new_status),
            "actor": actor,
            **extra,
        }
        self.emit(f"{resource}_status_changed", details, user_id=actor if isinstance(actor, int) else None)

    def emit(self, event_type: str, details: Dict[str, Any], user_id: Optional[int] = None) -> None:
        try:
            self._sink(event_type, details, user_id, self.request_id)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Audit emission failed",
                event_type=event_type,
                error=str(e),
                **{k: v for k, v in details.items() if k in ("resource", "resource_id")},
            )


__all__ = ["AuditTrail", "AuditSink"]
