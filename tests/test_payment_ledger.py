from decimal import Decimal

import pytest

from adplatform.models.db import Payment
from adplatform.models.db.enums import PaymentStatus
from adplatform.services.payment_ledger import compute_amounts, invoice_number_for
from adplatform.utils.errors import InvalidStateError, NotFoundError, ValidationError


@pytest.mark.parametrize(
    "amount, rate, expected",
    [
        (20000, "0.22", (4400, 24400)),
        (1000, "0.225", (225, 1225)),
        (5, "0.1", (1, 6)),       # 0.5 rounds half-up
        (4, "0.1", (0, 4)),
        (12345, "0", (0, 12345)),
    ],
)
def test_compute_amounts_rounds_half_up(amount, rate, expected):
    assert compute_amounts(amount, rate) == expected


def test_compute_amounts_rejects_negative_input():
    with pytest.raises(ValidationError):
        compute_amounts(-1, "0.22")
    with pytest.raises(ValidationError):
        compute_amounts(100, "-0.1")


def test_invoice_number_format():
    from datetime import datetime, timezone
    assert invoice_number_for(42, datetime(2025, 3, 9, tzinfo=timezone.utc)) == "INV-202503-000042"


def test_create_for_checkout_stages_one_pending_row_per_campaign(ledger, repo, user_factory, account_for, campaign_factory):
    user = user_factory()
    account = account_for(user)
    c1, c2 = campaign_factory(account), campaign_factory(account)

    payments = ledger.create_for_checkout(user.id, [c1.id, c2.id], 20000, Decimal("0.22"))
    repo.commit()

    assert [p.campaign_id for p in payments] == [c1.id, c2.id]
    for p in payments:
        assert p.status == PaymentStatus.PENDING
        assert (p.amount_cents, p.vat_cents, p.total_cents) == (20000, 4400, 24400)
        assert p.total_cents == p.amount_cents + p.vat_cents


def test_create_for_checkout_rejects_duplicate_campaigns(ledger, user_factory, account_for, campaign_factory):
    user = user_factory()
    c = campaign_factory(account_for(user))
    with pytest.raises(ValidationError):
        ledger.create_for_checkout(user.id, [c.id, c.id])
    with pytest.raises(ValidationError):
        ledger.create_for_checkout(user.id, [])


def test_mark_paid_is_idempotent(ledger, repo, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    c = campaign_factory(account_for(user))
    p = payment_factory(user, c, session_id="cs_1")

    assert ledger.mark_paid("cs_1", "pi_1", user_id=user.id) == 1
    first = repo.get(Payment, p.id)
    paid_at = first.paid_at
    assert first.status == PaymentStatus.PAID
    assert first.stripe_payment_id == "pi_1"

    assert ledger.mark_paid("cs_1", "pi_1", user_id=user.id) == 0
    again = repo.get(Payment, p.id)
    assert again.status == PaymentStatus.PAID
    assert again.paid_at == paid_at


def test_mark_paid_scoped_to_user(ledger, repo, user_factory, account_for, campaign_factory, payment_factory):
    owner, other = user_factory(), user_factory()
    p = payment_factory(owner, campaign_factory(account_for(owner)), session_id="cs_shared")
    assert ledger.mark_paid("cs_shared", user_id=other.id) == 0
    assert repo.get(Payment, p.id).status == PaymentStatus.PENDING


def test_failure_never_overwrites_paid(ledger, repo, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    p = payment_factory(user, campaign_factory(account_for(user)), session_id="cs_2", intent_id="pi_2")
    ledger.mark_paid("cs_2", "pi_2", user_id=user.id)

    assert ledger.mark_failed("pi_2", "card_declined") == 0
    assert repo.get(Payment, p.id).status == PaymentStatus.PAID


def test_failed_payment_can_still_be_paid_by_retry(ledger, repo, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    p = payment_factory(user, campaign_factory(account_for(user)), session_id="cs_3", intent_id="pi_3")
    assert ledger.mark_failed("pi_3", "insufficient_funds") == 1
    failed = repo.get(Payment, p.id)
    assert failed.status == PaymentStatus.FAILED
    assert failed.failure_reason == "insufficient_funds"

    assert ledger.mark_intent_paid("pi_3", user.id, [p.campaign_id]) == 1
    paid = repo.get(Payment, p.id)
    assert paid.status == PaymentStatus.PAID
    assert paid.failure_reason is None


def test_intent_event_before_session_event_binds_by_campaign(ledger, repo, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    c = campaign_factory(account_for(user))
    p = payment_factory(user, c, session_id="cs_4")

    assert ledger.mark_intent_paid("pi_4", user.id, [c.id]) == 1
    row = repo.get(Payment, p.id)
    assert row.status == PaymentStatus.PAID
    assert row.stripe_payment_id == "pi_4"
    # The late session event is a no-op
    assert ledger.mark_paid("cs_4", "pi_4", user_id=user.id) == 0


def test_bind_session_intent_does_not_settle(ledger, repo, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    p = payment_factory(user, campaign_factory(account_for(user)), session_id="cs_5")
    assert ledger.bind_session_intent("cs_5", "pi_5") == 1
    row = repo.get(Payment, p.id)
    assert row.stripe_payment_id == "pi_5"
    assert row.status == PaymentStatus.PENDING


def test_attach_invoice(ledger, repo, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    p = payment_factory(user, campaign_factory(account_for(user)), status=PaymentStatus.PAID, intent_id="pi_6")
    assert ledger.attach_invoice("pi_6", "https://invoices.test/1.pdf", "A-0001") == 1
    row = repo.get(Payment, p.id)
    assert row.invoice_url == "https://invoices.test/1.pdf"
    assert row.invoice_number == "A-0001"
    assert ledger.attach_invoice("pi_unknown", "x", "y") == 0


def test_get_invoice_requires_paid_and_numbers_once(ledger, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    pending = payment_factory(user, campaign_factory(account_for(user)))
    with pytest.raises(InvalidStateError):
        ledger.get_invoice(pending.id)

    paid = payment_factory(user, campaign_factory(account_for(user)), status=PaymentStatus.PAID)
    first = ledger.get_invoice(paid.id)
    assert first["invoice_number"].startswith("INV-")
    assert first["invoice_number"].endswith(f"{paid.id:06d}")
    assert first["total_cents"] == 24400
    assert ledger.get_invoice(paid.id)["invoice_number"] == first["invoice_number"]


def test_refund_only_from_paid(ledger, repo, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    paid = payment_factory(user, campaign_factory(account_for(user)), status=PaymentStatus.PAID, session_id="cs_r")
    refunded = ledger.refund(paid.id, "customer request")
    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.refunded_at is not None

    with pytest.raises(InvalidStateError):
        ledger.refund(paid.id)
    # A refunded row can no longer be paid or failed
    assert ledger.mark_paid("cs_r") == 0
    with pytest.raises(NotFoundError):
        ledger.refund(999999)


def test_stats_for_user(ledger, user_factory, account_for, campaign_factory, payment_factory):
    from adplatform.models.db.enums import CampaignStatus

    user = user_factory()
    account = account_for(user)
    c1 = campaign_factory(account, status=CampaignStatus.RUNNING)
    c2 = campaign_factory(account)
    p1 = payment_factory(user, c1, session_id="cs_stats")
    ledger.mark_paid("cs_stats", user_id=user.id)
    payment_factory(user, c2)

    stats = ledger.stats_for_user(user.id)
    assert stats["total_spent_cents"] == p1.total_cents
    assert stats["monthly_spend_cents"] == p1.total_cents
    assert stats["pending_payments"] == 1
    assert stats["total_campaigns"] == 2
    assert stats["active_campaigns"] == 1


def test_list_for_user_paginates_and_filters(ledger, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    account = account_for(user)
    for _ in range(3):
        payment_factory(user, campaign_factory(account))
    payment_factory(user, campaign_factory(account), status=PaymentStatus.PAID)

    items, total = ledger.list_for_user(user.id, page=1, limit=2)
    assert total == 4 and len(items) == 2
    paid, paid_total = ledger.list_for_user(user.id, status=PaymentStatus.PAID)
    assert paid_total == 1 and paid[0].status == PaymentStatus.PAID
