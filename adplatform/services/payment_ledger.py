"""Payment ledger: what was paid, for which campaign, and when.

One ``Payment`` row per campaign per checkout session. Rows move
PENDING -> PAID | FAILED and PAID -> REFUNDED. Every status write is a
conditional update carrying the statuses it may leave, so duplicate or
out-of-order processor deliveries converge on the same rows instead of
stacking changes.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import func, or_, select

from adplatform.config import API_BASE_URL, BILLING_SETTINGS, CAMPAIGN_SETTINGS
from adplatform.models.db.campaigns import CampaignRequest
from adplatform.models.db.client_accounts import ClientAccount
from adplatform.models.db.enums import ACTIVE_CAMPAIGN_STATUSES, PaymentStatus
from adplatform.models.db.payments import Payment
from adplatform.services.repository import Repository
from adplatform.utils import get_logger
from adplatform.utils.errors import InvalidStateError, NotFoundError, ValidationError
from adplatform.utils.time import start_of_month, utc_now

logger = get_logger(__name__)

# A processor retry on the same intent can succeed after an earlier failure
PAYABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.FAILED)


def compute_amounts(amount_cents: int, vat_rate: float | Decimal | str) -> tuple[int, int]:
    """Return ``(vat_cents, total_cents)`` with VAT rounded half-up to the cent.

    >>> compute_amounts(20000, 0.22)
    (4400, 24400)
    """
    if amount_cents < 0:
        raise ValidationError("Amount must not be negative", details={"amount_cents": amount_cents})
    rate = Decimal(str(vat_rate))
    if rate < 0:
        raise ValidationError("VAT rate must not be negative", details={"vat_rate": str(rate)})
    vat_cents = int((Decimal(amount_cents) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return vat_cents, amount_cents + vat_cents


def invoice_number_for(payment_id: int, when: datetime) -> str:
    return f"INV-{when:%Y%m}-{payment_id:06d}"


class PaymentLedger:
    def __init__(
        self,
        repo: Repository,
        *,
        settings: Mapping[str, Any] = BILLING_SETTINGS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repo
        self.settings = settings
        self.clock = clock

    # ------------------------------------------------------------------ reads
    def get(self, payment_id: int) -> Payment:
        payment = self.repo.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", details={"payment_id": payment_id})
        return payment

    def has_paid_payment(self, campaign_id: int) -> bool:
        return (
            self.repo.query(Payment.id)
            .filter(Payment.campaign_id == campaign_id, Payment.status == PaymentStatus.PAID)
            .first()
            is not None
        )

    def paid_payment_clause(self, campaign_id: int):
        """SQL condition that holds while ``campaign_id`` has a PAID payment.

        Meant for the WHERE clause of a conditional write on another table, so
        the check and the write are one statement.
        """
        return (
            select(Payment.id)
            .where(Payment.campaign_id == campaign_id, Payment.status == PaymentStatus.PAID)
            .exists()
        )

    def lock_paid_payments(self, campaign_id: int) -> int:
        """Row-lock the campaign's PAID payments until the transaction ends.

        A concurrent refund then waits for our commit instead of slipping in
        between our check and our write. SQLite ignores FOR UPDATE; its single
        writer lock gives the same ordering.
        """
        rows = (
            self.repo.query(Payment.id)
            .filter(Payment.campaign_id == campaign_id, Payment.status == PaymentStatus.PAID)
            .with_for_update()
            .all()
        )
        return len(rows)

    def payments_for_reference(self, session_or_intent_id: str) -> List[Payment]:
        return (
            self.repo.query(Payment)
            .populate_existing()
            .filter(or_(
                Payment.stripe_session_id == session_or_intent_id,
                Payment.stripe_payment_id == session_or_intent_id,
            ))
            .order_by(Payment.id)
            .all()
        )

    def list_for_user(
        self,
        user_id: int,
        *,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[PaymentStatus] = None,
    ) -> tuple[List[Payment], int]:
        limit = min(limit or int(CAMPAIGN_SETTINGS["default_page_size"]), int(CAMPAIGN_SETTINGS["max_page_size"]))
        page = max(page, 1)
        q = self.repo.query(Payment).filter(Payment.user_id == user_id)
        if status is not None:
            q = q.filter(Payment.status == status)
        total = q.count()
        items = q.order_by(Payment.created_at.desc(), Payment.id.desc()).offset((page - 1) * limit).limit(limit).all()
        return items, total

    def stats_for_user(self, user_id: int) -> Dict[str, int]:
        """Derived billing figures; amounts are in cents."""
        paid = self.repo.query(Payment).filter(Payment.user_id == user_id, Payment.status == PaymentStatus.PAID)
        total_spent = paid.with_entities(func.coalesce(func.sum(Payment.total_cents), 0)).scalar() or 0
        monthly_spend = (
            paid.filter(Payment.paid_at >= start_of_month(self.clock()))
            .with_entities(func.coalesce(func.sum(Payment.total_cents), 0))
            .scalar()
            or 0
        )
        pending = (
            self.repo.query(Payment)
            .filter(Payment.user_id == user_id, Payment.status == PaymentStatus.PENDING)
            .count()
        )
        campaigns = (
            self.repo.query(CampaignRequest)
            .join(ClientAccount, CampaignRequest.client_account_id == ClientAccount.id)
            .filter(ClientAccount.user_id == user_id)
        )
        return {
            "total_spent_cents": int(total_spent),
            "monthly_spend_cents": int(monthly_spend),
            "pending_payments": pending,
            "total_campaigns": campaigns.count(),
            "active_campaigns": campaigns.filter(CampaignRequest.status.in_(tuple(ACTIVE_CAMPAIGN_STATUSES))).count(),
        }

    def get_invoice(self, payment_id: int) -> Dict[str, Any]:
        """Invoice metadata for a PAID payment, numbering it on first request."""
        payment = self.get(payment_id)
        if payment.status != PaymentStatus.PAID:
            raise InvalidStateError(
                "Invoice only available for paid payments",
                details={"payment_id": payment_id, "status": payment.status.value},
            )
        if not payment.invoice_number:
            number = invoice_number_for(payment.id, payment.paid_at or self.clock())
            self.repo.update_where(
                Payment,
                Payment.id == payment_id,
                Payment.invoice_number.is_(None),
                invoice_number=number,
                invoice_url=f"{API_BASE_URL}/invoices/{number}.pdf",
            )
            self.repo.commit()
            logger.info("Generated invoice number", payment_id=payment_id, invoice_number=number)
            payment = self.get(payment_id)
        return {
            "payment_id": payment.id,
            "invoice_number": payment.invoice_number,
            "invoice_url": payment.invoice_url,
            "amount_cents": payment.amount_cents,
            "vat_cents": payment.vat_cents,
            "total_cents": payment.total_cents,
            "currency": payment.currency,
            "paid_at": payment.paid_at,
        }

    # --------------------------------------------------------------- checkout
    def create_for_checkout(
        self,
        user_id: int,
        campaign_ids: Sequence[int],
        price_per_unit_cents: Optional[int] = None,
        vat_rate: Optional[float | Decimal] = None,
        session_id: Optional[str] = None,
    ) -> List[Payment]:
        """Stage one PENDING row per campaign. Flushed, not committed."""
        if not campaign_ids:
            raise ValidationError("At least one campaign is required for checkout")
        if len(set(campaign_ids)) != len(campaign_ids):
            raise ValidationError("Each campaign may appear only once per checkout", details={"campaign_ids": list(campaign_ids)})
        unit = int(price_per_unit_cents if price_per_unit_cents is not None else self.settings["unit_price_cents"])
        rate = Decimal(str(vat_rate if vat_rate is not None else self.settings["vat_rate"]))
        vat_cents, total_cents = compute_amounts(unit, rate)

        payments = [
            Payment(
                user_id=user_id,
                campaign_id=cid,
                amount_cents=unit,
                vat_rate=rate,
                vat_cents=vat_cents,
                total_cents=total_cents,
                currency=str(self.settings["currency"]),
                status=PaymentStatus.PENDING,
                stripe_session_id=session_id,
            )
            for cid in campaign_ids
        ]
        for p in payments:
            self.repo.add(p)
        self.repo.flush()
        return payments

    def attach_session(self, payments: Iterable[Payment], session_id: str) -> None:
        for p in payments:
            p.stripe_session_id = session_id
        self.repo.flush()

    def bind_session_intent(self, session_id: str, intent_id: str) -> int:
        """Record the processor's payment intent on a session's rows without settling them."""
        bound = self.repo.update_where(
            Payment,
            Payment.stripe_session_id == session_id,
            Payment.stripe_payment_id.is_(None),
            stripe_payment_id=intent_id,
        )
        self.repo.commit()
        return bound

    # ------------------------------------------------------ processor results
    def mark_paid(
        self,
        session_or_intent_id: str,
        external_payment_id: Optional[str] = None,
        *,
        user_id: Optional[int] = None,
    ) -> int:
        """Flip the referenced rows to PAID. Already-PAID rows are untouched.

        Returns how many rows this call moved to PAID.
        """
        criteria = [
            or_(
                Payment.stripe_session_id == session_or_intent_id,
                Payment.stripe_payment_id == session_or_intent_id,
            ),
            Payment.status.in_(PAYABLE_STATUSES),
        ]
        if user_id is not None:
            criteria.append(Payment.user_id == user_id)
        values: Dict[str, Any] = {
            "status": PaymentStatus.PAID,
            "paid_at": self.clock(),
            "failure_reason": None,
            "updated_at": self.clock(),
        }
        if external_payment_id:
            values["stripe_payment_id"] = external_payment_id
        changed = self.repo.update_where(Payment, *criteria, **values)

        if external_payment_id:
            # Rows paid earlier through the intent path may still lack the session's intent id
            self.repo.update_where(
                Payment,
                Payment.stripe_session_id == session_or_intent_id,
                Payment.stripe_payment_id.is_(None),
                stripe_payment_id=external_payment_id,
            )
        self.repo.commit()
        if changed:
            logger.info(
                "Payments marked paid",
                reference=session_or_intent_id,
                payment_intent=external_payment_id,
                count=changed,
            )
        else:
            logger.info("No payable rows for reference", reference=session_or_intent_id)
        return changed

    def mark_intent_paid(self, intent_id: str, user_id: Optional[int] = None, campaign_ids: Sequence[int] = ()) -> int:
        """Payment-succeeded path, tolerant of arriving before the session event."""
        self._bind_intent(intent_id, user_id, campaign_ids)
        return self.mark_paid(intent_id, user_id=user_id)

    def mark_failed(
        self,
        intent_id: str,
        reason: Optional[str] = None,
        *,
        user_id: Optional[int] = None,
        campaign_ids: Sequence[int] = (),
    ) -> int:
        """PENDING -> FAILED. Never touches PAID or REFUNDED rows."""
        self._bind_intent(intent_id, user_id, campaign_ids)
        changed = self.repo.update_where(
            Payment,
            Payment.stripe_payment_id == intent_id,
            Payment.status == PaymentStatus.PENDING,
            status=PaymentStatus.FAILED,
            failure_reason=reason,
            updated_at=self.clock(),
        )
        self.repo.commit()
        if changed:
            logger.warning("Payments marked failed", payment_intent=intent_id, reason=reason, count=changed)
        return changed

    def attach_invoice(self, intent_id: str, invoice_url: Optional[str], invoice_number: Optional[str]) -> int:
        values: Dict[str, Any] = {"updated_at": self.clock()}
        if invoice_url:
            values["invoice_url"] = invoice_url
        if invoice_number:
            values["invoice_number"] = invoice_number
        changed = self.repo.update_where(Payment, Payment.stripe_payment_id == intent_id, **values)
        self.repo.commit()
        return changed

    def refund(self, payment_id: int, reason: Optional[str] = None) -> Payment:
        applied = self.repo.compare_and_set(
            Payment,
            payment_id,
            PaymentStatus.PAID,
            status=PaymentStatus.REFUNDED,
            refunded_at=self.clock(),
            updated_at=self.clock(),
        )
        if not applied:
            self.repo.rollback()
            payment = self.get(payment_id)
            raise InvalidStateError(
                "Can only refund paid payments",
                details={"payment_id": payment_id, "status": payment.status.value},
            )
        self.repo.commit()
        payment = self.get(payment_id)
        logger.info("Payment refunded", payment_id=payment_id, user_id=payment.user_id, reason=reason)
        return payment

    # ---------------------------------------------------------------- helpers
    def _bind_intent(self, intent_id: str, user_id: Optional[int], campaign_ids: Sequence[int]) -> int:
        """Attach an intent id to the newest open row of each listed campaign.

        Only used when no row carries the intent yet; a no-op otherwise.
        """
        already_bound = self.repo.query(Payment.id).filter(Payment.stripe_payment_id == intent_id).first()
        if already_bound is not None or user_id is None or not campaign_ids:
            return 0
        row_ids = []
        for cid in campaign_ids:
            newest = (
                self.repo.query(Payment.id)
                .filter(
                    Payment.user_id == user_id,
                    Payment.campaign_id == cid,
                    Payment.status.in_(PAYABLE_STATUSES),
                    Payment.stripe_payment_id.is_(None),
                )
                .order_by(Payment.id.desc())
                .first()
            )
            if newest is not None:
                row_ids.append(newest[0])
        if not row_ids:
            return 0
        bound = self.repo.update_where(
            Payment,
            Payment.id.in_(row_ids),
            Payment.stripe_payment_id.is_(None),
            stripe_payment_id=intent_id,
        )
        logger.info("Bound payment intent to open payments", payment_intent=intent_id, payment_ids=row_ids)
        return bound


__all__ = ["PaymentLedger", "compute_amounts", "invoice_number_for", "PAYABLE_STATUSES"]
