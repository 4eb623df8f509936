"""
Integrations package initialization.
Exports the outbound gateway contracts and their adapters.
"""
from .base import (
    AdAccountGateway,
    CheckoutGateway,
    CheckoutLineItem,
    CheckoutRequest,
    CheckoutSession,
    WebhookVerifier,
)
from .google_ads import SimulatedGoogleAdsGateway
from .stripe_gateway import StripeCheckoutGateway, StripeWebhookVerifier

__all__ = [
    "AdAccountGateway",
    "CheckoutGateway",
    "CheckoutLineItem",
    "CheckoutRequest",
    "CheckoutSession",
    "WebhookVerifier",
    "SimulatedGoogleAdsGateway",
    "StripeCheckoutGateway",
    "StripeWebhookVerifier",
]
