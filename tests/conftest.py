"""Pytest fixtures and factories.

All model modules must be imported before Base.metadata.create_all(), otherwise
back_populates targets might not exist yet.
"""
import hashlib
import hmac
import json
import os
import secrets
import sys
import time
from decimal import Decimal
from pathlib import Path

# Point the app at a throwaway database and keep the background link sync off
# before anything from adplatform is imported.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///./test_adplatform.db")
os.environ["ENABLE_LINK_SYNC"] = "0"
os.environ.setdefault("MOCK_FAILURE_RATE", "0")

import pytest
from fastapi.testclient import TestClient

# Ensure project root on sys.path so 'adplatform' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from adplatform.main import app  # type: ignore
from adplatform.database import Base, SessionLocal, engine  # type: ignore
from adplatform.api import deps  # type: ignore
from adplatform.integrations.base import CheckoutGateway, CheckoutRequest, CheckoutSession
from adplatform.integrations.google_ads import SimulatedGoogleAdsGateway
from adplatform.integrations.stripe_gateway import StripeWebhookVerifier
from adplatform.models.db import CampaignRequest, ClientAccount, Payment, User
from adplatform.models.db.enums import CampaignStatus, PaymentStatus, UserRole
from adplatform.services.audit import AuditTrail
from adplatform.services.campaign_state_machine import CampaignStateMachine
from adplatform.services.payment_ledger import PaymentLedger, compute_amounts
from adplatform.services.repository import Repository
from adplatform.utils.circuit_breaker import GLOBAL_CIRCUIT_BREAKER

WEBHOOK_SECRET = "whsec_test_secret"


class FakeCheckoutGateway(CheckoutGateway):
    """Records checkout requests and hands back predictable session ids."""

    def __init__(self):
        self.requests: list[CheckoutRequest] = []
        self.fail_with: Exception | None = None

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        if self.fail_with is not None:
            raise self.fail_with
        self.requests.append(request)
        session_id = f"cs_test_{secrets.token_hex(6)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/pay/{session_id}")


class RecordingAudit(AuditTrail):
    """Audit trail that keeps emitted events in memory."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []
        super().__init__(sink=self._record)

    def _record(self, event_type, details, user_id, request_id):
        self.events.append((event_type, details))

    def of_type(self, event_type: str) -> list[dict]:
        return [d for t, d in self.events if t == event_type]


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_adplatform.db")
    except OSError:
        pass


@pytest.fixture(autouse=True)
def _isolate_test_state(create_test_db):
    """Wipe every table and the in-memory circuit breaker around each test."""
    GLOBAL_CIRCUIT_BREAKER.reset()
    yield
    GLOBAL_CIRCUIT_BREAKER.reset()
    app.dependency_overrides.clear()
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def repo(db_session):
    return Repository(db_session)


@pytest.fixture()
def audit():
    return RecordingAudit()


@pytest.fixture()
def ledger(repo):
    return PaymentLedger(repo)


@pytest.fixture()
def machine(repo, audit, ledger):
    return CampaignStateMachine(repo, audit, ledger)


@pytest.fixture()
def checkout_gateway():
    return FakeCheckoutGateway()


@pytest.fixture()
def ads_gateway():
    return SimulatedGoogleAdsGateway(manager_customer_id="9999999999", failure_rate=0)


@pytest.fixture()
def client(checkout_gateway, ads_gateway):
    app.dependency_overrides[deps.get_checkout_gateway] = lambda: checkout_gateway
    app.dependency_overrides[deps.get_webhook_verifier] = lambda: StripeWebhookVerifier(WEBHOOK_SECRET)
    app.dependency_overrides[deps.get_ad_account_gateway] = lambda: ads_gateway
    return TestClient(app)


# ---------- Data factory helpers ----------

@pytest.fixture()
def user_factory(db_session):
    def _create(role: UserRole = UserRole.CLIENT, email: str | None = None, with_account: bool = True):
        user = User(
            email=email or f"{secrets.token_hex(4)}@example.com",
            first_name="Test",
            last_name=role.value.title(),
            api_key=f"adp_{secrets.token_hex(12)}",
            role=role,
        )
        db_session.add(user)
        db_session.flush()
        if role == UserRole.CLIENT and with_account:
            db_session.add(ClientAccount(user_id=user.id))
        db_session.commit()
        db_session.refresh(user)
        return user
    return _create


@pytest.fixture()
def account_for(db_session):
    def _get(user: User) -> ClientAccount:
        return db_session.query(ClientAccount).filter(ClientAccount.user_id == user.id).one()
    return _get


@pytest.fixture()
def campaign_factory(db_session):
    def _create(account: ClientAccount, status: CampaignStatus = CampaignStatus.DRAFT, **overrides):
        values = dict(
            client_account_id=account.id,
            clip_url="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            clip_title=f"Clip {secrets.token_hex(2)}",
            artists_list="Test Artist",
            countries=["IT"],
            targeting_config={},
            budget_config={"daily_budget_eur": 10.0, "total_budget_eur": 200.0},
            duration_days=30,
            status=status,
        )
        values.update(overrides)
        campaign = CampaignRequest(**values)
        db_session.add(campaign)
        account.campaign_count = (account.campaign_count or 0) + 1
        db_session.commit()
        db_session.refresh(campaign)
        return campaign
    return _create


@pytest.fixture()
def payment_factory(db_session):
    def _create(
        user: User,
        campaign: CampaignRequest | None,
        status: PaymentStatus = PaymentStatus.PENDING,
        session_id: str | None = None,
        intent_id: str | None = None,
        amount_cents: int = 20000,
    ):
        vat_cents, total_cents = compute_amounts(amount_cents, "0.22")
        payment = Payment(
            user_id=user.id,
            campaign_id=campaign.id if campaign is not None else None,
            amount_cents=amount_cents,
            vat_rate=Decimal("0.22"),
            vat_cents=vat_cents,
            total_cents=total_cents,
            currency="eur",
            status=status,
            stripe_session_id=session_id,
            stripe_payment_id=intent_id,
        )
        db_session.add(payment)
        db_session.commit()
        db_session.refresh(payment)
        return payment
    return _create


@pytest.fixture()
def auth_header(user_factory):
    user = user_factory()
    return {"Authorization": f"Bearer {user.api_key}"}, user


@pytest.fixture()
def admin_header(user_factory):
    admin = user_factory(role=UserRole.ADMIN)
    return {"Authorization": f"Bearer {admin.api_key}"}, admin


# ---------- Stripe webhook helpers ----------

def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe does."""
    ts = int(timestamp if timestamp is not None else time.time())
    digest = hmac.new(secret.encode(), f"{ts}.{payload.decode()}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture()
def stripe_event():
    """Build raw Stripe event bodies for the event types we handle."""
    def _build(event_type: str, obj: dict, event_id: str | None = None) -> bytes:
        body = {
            "id": event_id or f"evt_{secrets.token_hex(8)}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "livemode": False,
            "data": {"object": obj},
        }
        return json.dumps(body).encode()
    return _build


@pytest.fixture()
def checkout_completed(stripe_event):
    def _build(session_id: str, user_id: int, campaign_ids: list[int], *, intent_id: str | None = "pi_test_1",
               payment_status: str = "paid", event_id: str | None = None) -> bytes:
        return stripe_event(
            "checkout.session.completed",
            {
                "id": session_id,
                "object": "checkout.session",
                "payment_intent": intent_id,
                "payment_status": payment_status,
                "metadata": {"user_id": str(user_id), "campaign_ids": ",".join(str(c) for c in campaign_ids)},
            },
            event_id,
        )
    return _build


@pytest.fixture()
def post_webhook(client):
    def _post(payload: bytes, signature: str | None = None):
        headers = {"Content-Type": "application/json"}
        headers["Stripe-Signature"] = signature if signature is not None else sign_payload(payload)
        return client.post("/api/v1/webhooks/stripe", content=payload, headers=headers)
    return _post


@pytest.fixture()
def sign():
    return sign_payload
