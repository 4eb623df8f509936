"""Payment-processor webhook ingestion.

``WebhookReconciler.handle`` verifies the signature over the raw body,
decodes the event into a typed model, journals the delivery and then applies
it to the ledger (and, for completed checkouts, to the campaign lifecycle).

Deliveries can repeat and arrive out of order. The journal lets us
acknowledge an already-processed event without work, but correctness never
depends on it: every write below is conditional on the state it expects, so a
replay, a concurrent duplicate or a redelivery after a partial failure all
converge on the same rows.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from adplatform.integrations.base import WebhookVerifier
from adplatform.models.db.enums import PaymentStatus, WebhookEventStatus
from adplatform.models.db.payments import Payment
from adplatform.models.db.webhook_events import WebhookEvent
from adplatform.models.schemas.webhooks import (
    CheckoutSessionCompleted,
    InvoiceFinalized,
    PaymentIntentFailed,
    PaymentIntentSucceeded,
    UnknownEvent,
    decode_event,
)
from adplatform.services.audit import AuditTrail
from adplatform.services.campaign_state_machine import CampaignStateMachine
from adplatform.services.payment_ledger import PaymentLedger
from adplatform.services.repository import Repository
from adplatform.utils import get_logger
from adplatform.utils.errors import NotFoundError
from adplatform.utils.time import utc_now

logger = get_logger(__name__)

# Checkout sessions in these states have collected the money
SETTLED_SESSION_STATES = frozenset({"paid", "no_payment_required"})


@dataclass
class WebhookOutcome:
    event_id: str
    event_type: str
    status: str  # processed | duplicate | ignored
    details: Dict[str, Any] = field(default_factory=dict)


class WebhookReconciler:
    def __init__(
        self,
        repo: Repository,
        verifier: WebhookVerifier,
        ledger: Optional[PaymentLedger] = None,
        machine: Optional[CampaignStateMachine] = None,
        audit: Optional[AuditTrail] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repo
        self.verifier = verifier
        self.audit = audit or AuditTrail()
        self.ledger = ledger or PaymentLedger(repo, clock=clock)
        self.machine = machine or CampaignStateMachine(repo, self.audit, self.ledger, clock=clock)
        self.clock = clock

    def handle(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        self.verifier.verify(payload, signature)
        event = decode_event(payload)
        logger.info("Stripe webhook received", event_id=event.id, event_type=event.type)

        journal = self._journal(event)
        if journal.status == WebhookEventStatus.PROCESSED:
            logger.info("Duplicate webhook delivery acknowledged", event_id=event.id, attempts=journal.attempt_count)
            return WebhookOutcome(event.id, event.type, "duplicate")

        try:
            if isinstance(event, CheckoutSessionCompleted):
                details = self._on_checkout_completed(event)
            elif isinstance(event, PaymentIntentSucceeded):
                details = self._on_payment_succeeded(event)
            elif isinstance(event, PaymentIntentFailed):
                details = self._on_payment_failed(event)
            elif isinstance(event, InvoiceFinalized):
                details = self._on_invoice_finalized(event)
            else:
                logger.info("Unhandled Stripe webhook event type", event_id=event.id, event_type=event.type)
                self._finish(journal.id, WebhookEventStatus.IGNORED)
                return WebhookOutcome(event.id, event.type, "ignored")
        except Exception as e:
            self.repo.rollback()
            self._finish(journal.id, WebhookEventStatus.FAILED, error=f"{type(e).__name__}: {e}")
            logger.error(
                "Webhook processing failed",
                event_id=event.id,
                event_type=event.type,
                error=str(e),
                exc_info=True,
            )
            raise

        self._finish(journal.id, WebhookEventStatus.PROCESSED)
        return WebhookOutcome(event.id, event.type, "processed", details)

    # ------------------------------------------------------------ handlers
    def _on_checkout_completed(self, event: CheckoutSessionCompleted) -> Dict[str, Any]:
        session = event.session
        user_id = session.metadata.user_id
        if session.payment_status not in SETTLED_SESSION_STATES:
            # Delayed payment methods settle later through payment_intent.succeeded
            if session.payment_intent:
                self.ledger.bind_session_intent(session.id, session.payment_intent)
            logger.info(
                "Checkout completed without settled payment",
                session_id=session.id,
                payment_status=session.payment_status,
            )
            return {"payments_marked_paid": 0, "campaigns_queued": []}

        marked = self.ledger.mark_paid(session.id, session.payment_intent, user_id=user_id)
        rows = self._session_payments(session.id, user_id)
        if not rows:
            logger.warning("Checkout completed for unknown session", session_id=session.id, user_id=user_id)
            return {"payments_marked_paid": 0, "campaigns_queued": []}

        paid_campaigns = sorted({p.campaign_id for p in rows if p.status == PaymentStatus.PAID and p.campaign_id is not None})
        unlisted = sorted(set(session.metadata.campaign_ids) - {p.campaign_id for p in rows})
        if unlisted:
            logger.warning("Session metadata lists campaigns without payments", session_id=session.id, campaign_ids=unlisted)

        queued: List[int] = []
        for cid in paid_campaigns:
            try:
                if self.machine.queue_paid(cid, actor="stripe_webhook"):
                    queued.append(cid)
            except NotFoundError:
                logger.warning("Paid campaign no longer exists", campaign_id=cid, session_id=session.id)

        logger.info(
            "Checkout completed successfully",
            user_id=user_id,
            session_id=session.id,
            payments_marked_paid=marked,
            campaigns_queued=queued,
        )
        if marked:
            self.audit.emit(
                "checkout_completed",
                {"session_id": session.id, "campaign_ids": paid_campaigns, "payments_marked_paid": marked},
                user_id=user_id,
            )
        return {"payments_marked_paid": marked, "campaigns_queued": queued}

    def _on_payment_succeeded(self, event: PaymentIntentSucceeded) -> Dict[str, Any]:
        intent = event.intent
        if intent.metadata.user_id is None:
            logger.warning("Payment succeeded without user_id metadata", payment_intent=intent.id)
        marked = self.ledger.mark_intent_paid(intent.id, intent.metadata.user_id, intent.metadata.campaign_ids)
        logger.info("Payment succeeded", payment_intent=intent.id, amount=intent.amount, payments_marked_paid=marked)
        return {"payments_marked_paid": marked}

    def _on_payment_failed(self, event: PaymentIntentFailed) -> Dict[str, Any]:
        intent = event.intent
        reason = intent.last_payment_error.message if intent.last_payment_error else None
        failed = self.ledger.mark_failed(
            intent.id,
            reason,
            user_id=intent.metadata.user_id,
            campaign_ids=intent.metadata.campaign_ids,
        )
        logger.warning("Payment failed", payment_intent=intent.id, reason=reason, payments_marked_failed=failed)
        return {"payments_marked_failed": failed}

    def _on_invoice_finalized(self, event: InvoiceFinalized) -> Dict[str, Any]:
        invoice = event.invoice
        if not invoice.payment_intent:
            logger.warning("Invoice finalized without payment intent", invoice_id=invoice.id)
            return {"payments_updated": 0}
        updated = self.ledger.attach_invoice(
            invoice.payment_intent,
            invoice.invoice_pdf or invoice.hosted_invoice_url,
            invoice.number,
        )
        if not updated:
            logger.warning("Invoice finalized for unknown payment intent", invoice_id=invoice.id, payment_intent=invoice.payment_intent)
        else:
            logger.info("Invoice finalized", invoice_id=invoice.id, invoice_number=invoice.number, payment_intent=invoice.payment_intent)
        return {"payments_updated": updated}

    # ------------------------------------------------------------- journal
    def _journal(self, event: CheckoutSessionCompleted | PaymentIntentSucceeded | PaymentIntentFailed | InvoiceFinalized | UnknownEvent) -> WebhookEvent:
        try:
            row = WebhookEvent(
                stripe_event_id=event.id,
                event_type=event.type,
                status=WebhookEventStatus.RECEIVED,
                attempt_count=1,
            )
            self.repo.add(row)
            self.repo.commit()
            return row
        except IntegrityError:
            # Redelivery (or a concurrent duplicate) of an event we already journaled
            self.repo.rollback()
        self.repo.update_where(
            WebhookEvent,
            WebhookEvent.stripe_event_id == event.id,
            attempt_count=WebhookEvent.attempt_count + 1,
        )
        self.repo.commit()
        return (
            self.repo.query(WebhookEvent)
            .populate_existing()
            .filter(WebhookEvent.stripe_event_id == event.id)
            .one()
        )

    def _finish(self, journal_id: int, status: WebhookEventStatus, error: Optional[str] = None) -> None:
        criteria = [WebhookEvent.id == journal_id]
        if status != WebhookEventStatus.PROCESSED:
            # A concurrent duplicate may already have completed the event
            criteria.append(WebhookEvent.status != WebhookEventStatus.PROCESSED)
        self.repo.update_where(
            WebhookEvent,
            *criteria,
            status=status,
            last_error=error,
            processed_at=self.clock() if status != WebhookEventStatus.FAILED else None,
        )
        self.repo.commit()

    def _session_payments(self, session_id: str, user_id: Optional[int]) -> List[Payment]:
        q = self.repo.query(Payment).populate_existing().filter(Payment.stripe_session_id == session_id)
        if user_id is not None:
            q = q.filter(Payment.user_id == user_id)
        return q.all()


__all__ = ["WebhookReconciler", "WebhookOutcome"]
