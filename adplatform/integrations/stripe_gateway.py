"""
Stripe adapters: hosted checkout sessions and webhook signature checks.
"""
from typing import Optional

import stripe

from adplatform.config import STRIPE_SETTINGS
from adplatform.integrations.base import CheckoutGateway, CheckoutRequest, CheckoutSession, WebhookVerifier
from adplatform.utils import get_logger
from adplatform.utils.errors import ExternalServiceError, SignatureError

logger = get_logger(__name__)


class StripeCheckoutGateway(CheckoutGateway):
    """Creates Stripe Checkout sessions in ``payment`` mode."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key if api_key is not None else str(STRIPE_SETTINGS["secret_key"])

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        if not self.api_key:
            raise ExternalServiceError("stripe", "Stripe is not configured")

        metadata = {
            "user_id": str(request.user_id),
            "campaign_ids": ",".join(str(cid) for cid in request.campaign_ids),
            **request.metadata,
        }
        line_items = [
            {
                "price_data": {
                    "currency": request.currency.lower(),
                    "unit_amount": item.unit_amount_cents,
                    "product_data": {"name": item.name},
                },
                "quantity": item.quantity,
            }
            for item in request.line_items
        ]
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=line_items,
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                customer_email=request.customer_email,
                metadata=metadata,
                # Intent events carry the same ownership data as the session
                payment_intent_data={"metadata": metadata},
                invoice_creation={"enabled": True, "invoice_data": {"metadata": metadata}},
            )
        except stripe.StripeError as e:
            logger.error(
                "Stripe checkout session creation failed",
                user_id=request.user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ExternalServiceError("stripe", "Failed to create checkout session", original_error=e) from e

        logger.info("Stripe checkout session created", session_id=session.id, user_id=request.user_id)
        return CheckoutSession(id=session.id, url=session.url)


class StripeWebhookVerifier(WebhookVerifier):
    """Checks the ``Stripe-Signature`` header against the endpoint secret."""

    def __init__(self, secret: Optional[str] = None, tolerance_seconds: Optional[int] = None):
        self.secret = secret if secret is not None else str(STRIPE_SETTINGS["webhook_secret"])
        self.tolerance_seconds = int(
            tolerance_seconds if tolerance_seconds is not None else STRIPE_SETTINGS["webhook_tolerance_seconds"]
        )

    def verify(self, payload: bytes, signature: Optional[str]) -> None:
        if not self.secret:
            raise SignatureError("Webhook secret is not configured")
        if not signature:
            raise SignatureError("Missing Stripe-Signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.secret,
                self.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureError("Invalid webhook signature") from e
        except UnicodeDecodeError as e:
            raise SignatureError("Webhook body is not valid UTF-8") from e
