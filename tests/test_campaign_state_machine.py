from datetime import datetime, timedelta, timezone

import pytest

from adplatform.models.db import CampaignRequest, Payment
from adplatform.models.db.enums import CampaignStatus, PaymentStatus
from adplatform.services.campaign_state_machine import ALLOWED_TRANSITIONS, validate_budget, validate_video_url
from adplatform.utils.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PaymentRequiredError,
    ValidationError,
)
from adplatform.utils.time import ensure_aware

DRAFT = {
    "clip_url": "https://youtu.be/dQw4w9WgXcQ",
    "clip_title": "Never Gonna Give You Up",
    "artists_list": "Rick Astley",
    "countries": ["IT", "FR"],
    "targeting_config": {"age_range": "18-34"},
    "budget_config": {"daily_budget_eur": 10, "total_budget_eur": 200},
}


@pytest.mark.parametrize("url", [
    "https://www.youtube.com/watch?v=abc123",
    "youtube.com/embed/abc_123",
    "https://youtu.be/xyz-9",
])
def test_valid_video_urls(url):
    assert validate_video_url(url) == url


@pytest.mark.parametrize("url", ["", "https://vimeo.com/123", "ftp://youtube.com/watch?v=a"])
def test_invalid_video_urls(url):
    with pytest.raises(ValidationError):
        validate_video_url(url)


def test_budget_rules():
    assert validate_budget({"daily_budget_eur": "5", "total_budget_eur": 5}) == {"daily_budget_eur": 5.0, "total_budget_eur": 5.0}
    with pytest.raises(ValidationError):
        validate_budget({"daily_budget_eur": 0, "total_budget_eur": 10})
    with pytest.raises(ValidationError):
        validate_budget({"daily_budget_eur": 20, "total_budget_eur": 10})
    with pytest.raises(ValidationError):
        validate_budget({"daily_budget_eur": 20})


def test_create_starts_in_draft_and_audits(machine, audit, user_factory, account_for):
    account = account_for(user_factory())
    campaign = machine.create(account.id, DRAFT, actor=account.user_id)
    assert campaign.status == CampaignStatus.DRAFT
    assert campaign.duration_days == 30
    assert campaign.budget_config == {"daily_budget_eur": 10.0, "total_budget_eur": 200.0}
    assert audit.of_type("campaign_created")[0]["resource_id"] == campaign.id


def test_create_requires_existing_account(machine):
    with pytest.raises(ConflictError):
        machine.create(424242, DRAFT)


def test_create_enforces_campaign_ceiling(repo, audit, ledger, user_factory, account_for):
    from adplatform.services.campaign_state_machine import CampaignStateMachine

    account = account_for(user_factory())
    limited = CampaignStateMachine(
        repo, audit, ledger,
        settings={"duration_days": 30, "max_campaigns_per_account": 2, "default_page_size": 10, "max_page_size": 100},
    )
    limited.create(account.id, DRAFT)
    limited.create(account.id, DRAFT)
    with pytest.raises(ConflictError):
        limited.create(account.id, DRAFT)


def test_update_only_in_draft(machine, user_factory, account_for, campaign_factory):
    account = account_for(user_factory())
    draft = campaign_factory(account)
    updated = machine.update(draft.id, {"clip_title": "New title", "status": "RUNNING"})
    assert updated.clip_title == "New title"
    assert updated.status == CampaignStatus.DRAFT

    queued = campaign_factory(account, status=CampaignStatus.QUEUED)
    with pytest.raises(InvalidStateError):
        machine.update(queued.id, {"clip_title": "Too late"})
    with pytest.raises(ValidationError):
        machine.update(draft.id, {"clip_url": "https://example.com/video"})


def test_launch_requires_paid_payment(machine, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    campaign = campaign_factory(account_for(user))
    with pytest.raises(PaymentRequiredError):
        machine.launch(campaign.id)

    payment_factory(user, campaign, status=PaymentStatus.FAILED)
    with pytest.raises(PaymentRequiredError):
        machine.launch(campaign.id)
    assert machine.get(campaign.id).status == CampaignStatus.DRAFT


def test_launch_queues_and_schedules(machine, audit, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    campaign = campaign_factory(account_for(user))
    payment_factory(user, campaign, status=PaymentStatus.PAID)
    start = datetime(2030, 1, 1, tzinfo=timezone.utc)

    launched = machine.launch(campaign.id, start, actor=user.id)
    assert launched.status == CampaignStatus.QUEUED
    assert ensure_aware(launched.starts_at) == start
    assert ensure_aware(launched.ends_at) == start + timedelta(days=30)

    changes = audit.of_type("campaign_status_changed")
    assert len(changes) == 1
    assert changes[0]["old_status"] == "DRAFT" and changes[0]["new_status"] == "QUEUED"

    # Launching again is a no-op, not an error
    again = machine.launch(campaign.id, actor=user.id)
    assert again.status == CampaignStatus.QUEUED
    assert len(audit.of_type("campaign_status_changed")) == 1


def test_queue_paid_is_noop_past_draft(machine, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    account = account_for(user)
    running = campaign_factory(account, status=CampaignStatus.RUNNING)
    payment_factory(user, running, status=PaymentStatus.PAID)
    assert machine.queue_paid(running.id) is False
    assert machine.get(running.id).status == CampaignStatus.RUNNING

    unpaid = campaign_factory(account)
    assert machine.queue_paid(unpaid.id) is False
    assert machine.get(unpaid.id).status == CampaignStatus.DRAFT


def test_full_lifecycle(machine, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    campaign = campaign_factory(account_for(user))
    payment_factory(user, campaign, status=PaymentStatus.PAID)

    machine.launch(campaign.id)
    running = machine.mark_running(campaign.id, actor="provisioner")
    assert running.status == CampaignStatus.RUNNING
    assert running.actual_started_at is not None
    assert machine.pause(campaign.id).status == CampaignStatus.PAUSED
    ended = machine.end(campaign.id)
    assert ended.status == CampaignStatus.ENDED
    assert ended.actual_ended_at is not None

    # ENDED is terminal
    for move in (machine.pause, machine.mark_running, machine.cancel):
        with pytest.raises(InvalidStateError):
            move(campaign.id)


@pytest.mark.parametrize("start, move", [
    (CampaignStatus.DRAFT, "pause"),
    (CampaignStatus.DRAFT, "end"),
    (CampaignStatus.DRAFT, "mark_running"),
    (CampaignStatus.QUEUED, "pause"),
    (CampaignStatus.PAUSED, "mark_running"),
    (CampaignStatus.CANCELLED, "end"),
])
def test_illegal_transitions_raise(machine, user_factory, account_for, campaign_factory, start, move):
    campaign = campaign_factory(account_for(user_factory()), status=start)
    with pytest.raises(InvalidStateError):
        getattr(machine, move)(campaign.id)
    assert machine.get(campaign.id).status == start


def test_transition_table_has_no_exit_from_terminal_states():
    for sources in ALLOWED_TRANSITIONS.values():
        assert CampaignStatus.ENDED not in sources
        assert CampaignStatus.CANCELLED not in sources


def test_cancel_from_draft(machine, user_factory, account_for, campaign_factory):
    campaign = campaign_factory(account_for(user_factory()))
    cancelled = machine.cancel(campaign.id, actor="admin")
    assert cancelled.status == CampaignStatus.CANCELLED
    assert cancelled.actual_ended_at is not None


def test_delete_keeps_payments(machine, repo, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    account = account_for(user)
    campaign = campaign_factory(account, status=CampaignStatus.ENDED)
    payment = payment_factory(user, campaign, status=PaymentStatus.PAID)

    machine.delete(campaign.id, actor=user.id)
    with pytest.raises(NotFoundError):
        machine.get(campaign.id)
    survivor = repo.get(Payment, payment.id)
    assert survivor is not None
    assert survivor.campaign_id is None
    assert survivor.status == PaymentStatus.PAID


def test_delete_refused_for_live_campaigns(machine, user_factory, account_for, campaign_factory):
    account = account_for(user_factory())
    for status in (CampaignStatus.QUEUED, CampaignStatus.RUNNING, CampaignStatus.PAUSED):
        campaign = campaign_factory(account, status=status)
        with pytest.raises(InvalidStateError):
            machine.delete(campaign.id)
        assert machine.get(campaign.id).status == status


def test_list_for_account_filters_and_searches(machine, user_factory, account_for, campaign_factory):
    account = account_for(user_factory())
    campaign_factory(account, clip_title="Summer Anthem", artists_list="DJ Sun")
    campaign_factory(account, clip_title="Winter Ballad", artists_list="Snow Band", status=CampaignStatus.RUNNING)
    other = account_for(user_factory())
    campaign_factory(other, clip_title="Summer Elsewhere")

    items, total = machine.list_for_account(account.id)
    assert total == 2
    items, total = machine.list_for_account(account.id, search="summer")
    assert total == 1 and items[0].clip_title == "Summer Anthem"
    items, total = machine.list_for_account(account.id, search="snow")
    assert total == 1 and items[0].clip_title == "Winter Ballad"
    items, total = machine.list_for_account(account.id, status=CampaignStatus.RUNNING)
    assert total == 1
    items, total = machine.list_for_account(account.id, page=2, limit=1)
    assert total == 2 and len(items) == 1


def test_get_unknown_campaign(machine):
    with pytest.raises(NotFoundError):
        machine.get(987654)


@pytest.mark.parametrize("title", [None, "", "   "])
def test_create_requires_title(machine, user_factory, account_for, title):
    account = account_for(user_factory())
    draft = {k: v for k, v in DRAFT.items() if k != "clip_title"}
    if title is not None:
        draft["clip_title"] = title
    with pytest.raises(ValidationError) as exc:
        machine.create(account.id, draft)
    assert exc.value.details["field"] == "clip_title"
    assert account.campaign_count == 0


def test_update_rejects_blank_title(machine, user_factory, account_for, campaign_factory):
    draft = campaign_factory(account_for(user_factory()), clip_title="Kept title")
    with pytest.raises(ValidationError):
        machine.update(draft.id, {"clip_title": "  "})
    assert machine.get(draft.id).clip_title == "Kept title"


def test_delete_frees_a_campaign_slot(repo, audit, ledger, user_factory, account_for):
    from adplatform.services.campaign_state_machine import CampaignStateMachine

    account = account_for(user_factory())
    limited = CampaignStateMachine(
        repo, audit, ledger,
        settings={"duration_days": 30, "max_campaigns_per_account": 1, "default_page_size": 10, "max_page_size": 100},
    )
    first = limited.create(account.id, DRAFT)
    with pytest.raises(ConflictError):
        limited.create(account.id, DRAFT)
    limited.delete(first.id)
    assert limited.create(account.id, DRAFT).status == CampaignStatus.DRAFT


def _refund_elsewhere(payment_id):
    from adplatform.database import SessionLocal
    from adplatform.services.payment_ledger import PaymentLedger
    from adplatform.services.repository import Repository

    session = SessionLocal()
    try:
        PaymentLedger(Repository(session)).refund(payment_id, "chargeback")
    finally:
        session.close()


def _refund_after_check(monkeypatch, ledger, payment_id):
    """Refund ``payment_id`` from another session right after the paid check passes."""
    original = ledger.has_paid_payment

    def checked(campaign_id):
        paid = original(campaign_id)
        _refund_elsewhere(payment_id)
        return paid

    monkeypatch.setattr(ledger, "has_paid_payment", checked)


def test_queue_paid_skips_campaign_refunded_after_check(
    monkeypatch, machine, ledger, audit, user_factory, account_for, campaign_factory, payment_factory
):
    user = user_factory()
    campaign = campaign_factory(account_for(user))
    payment = payment_factory(user, campaign, status=PaymentStatus.PAID)
    _refund_after_check(monkeypatch, ledger, payment.id)

    assert machine.queue_paid(campaign.id) is False
    assert machine.get(campaign.id).status == CampaignStatus.DRAFT
    assert audit.of_type("campaign_status_changed") == []


def test_launch_refuses_campaign_refunded_after_check(
    monkeypatch, machine, ledger, audit, user_factory, account_for, campaign_factory, payment_factory
):
    user = user_factory()
    campaign = campaign_factory(account_for(user))
    payment = payment_factory(user, campaign, status=PaymentStatus.PAID)
    _refund_after_check(monkeypatch, ledger, payment.id)

    with pytest.raises(PaymentRequiredError):
        machine.launch(campaign.id, actor=user.id)
    assert machine.get(campaign.id).status == CampaignStatus.DRAFT
    assert audit.of_type("campaign_status_changed") == []


def test_refund_payment_cancels_unpaid_live_campaign(machine, repo, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    campaign = campaign_factory(account_for(user), status=CampaignStatus.QUEUED)
    payment = payment_factory(user, campaign, status=PaymentStatus.PAID)

    refunded, cancelled = machine.refund_payment(payment.id, "requested", actor="admin")
    assert refunded.status == PaymentStatus.REFUNDED
    assert cancelled is True
    assert machine.get(campaign.id).status == CampaignStatus.CANCELLED


def test_refund_payment_leaves_draft_and_still_paid_campaigns(machine, user_factory, account_for, campaign_factory, payment_factory):
    user = user_factory()
    account = account_for(user)
    draft = campaign_factory(account)
    draft_payment = payment_factory(user, draft, status=PaymentStatus.PAID)
    assert machine.refund_payment(draft_payment.id)[1] is False
    assert machine.get(draft.id).status == CampaignStatus.DRAFT

    running = campaign_factory(account, status=CampaignStatus.RUNNING)
    first = payment_factory(user, running, status=PaymentStatus.PAID)
    payment_factory(user, running, status=PaymentStatus.PAID)
    assert machine.refund_payment(first.id)[1] is False
    assert machine.get(running.id).status == CampaignStatus.RUNNING

    with pytest.raises(InvalidStateError):
        machine.refund_payment(first.id)


class _BrokenSink:
    def __init__(self):
        self.calls = 0

    def __call__(self, event_type, details, user_id, request_id):
        self.calls += 1
        raise RuntimeError("audit store unavailable")


def test_failing_audit_sink_does_not_undo_transitions(repo, ledger, user_factory, account_for, campaign_factory, payment_factory):
    from adplatform.services.audit import AuditTrail
    from adplatform.services.campaign_state_machine import CampaignStateMachine

    sink = _BrokenSink()
    machine = CampaignStateMachine(repo, AuditTrail(sink=sink), ledger)
    user = user_factory()
    campaign = campaign_factory(account_for(user))
    payment_factory(user, campaign, status=PaymentStatus.PAID)

    assert machine.launch(campaign.id, actor=user.id).status == CampaignStatus.QUEUED
    assert machine.end(campaign.id, actor=user.id).status == CampaignStatus.ENDED
    assert sink.calls == 2
    assert repo.get(CampaignRequest, campaign.id).status == CampaignStatus.ENDED
