"""Process configuration & business rules.

Everything here is read from the environment once, at import time, and is
treated as immutable for the lifetime of the process. Rule groups are
exposed as read-only mappings so a stray assignment fails loudly instead of
silently changing pricing or lifecycle rules mid-flight. Services accept
explicit overrides in their constructors for tests.
"""
from __future__ import annotations

import os
from types import MappingProxyType
from typing import Final, Mapping


def _env_float(name: str, default: str) -> float:
	return float(os.getenv(name, default))


def _env_int(name: str, default: str) -> int:
	return int(os.getenv(name, default))


API_BASE_URL: Final[str] = os.getenv("API_BASE_URL", "http://localhost:8000/api/v1")

# Shared by simulated integrations (probability of a simulated outage)
MOCK_FAILURE_RATE: float = _env_float("MOCK_FAILURE_RATE", "0.05")

# ------------------------------- Campaigns -------------------------------- #
CAMPAIGN_SETTINGS: Mapping[str, int] = MappingProxyType({
	"duration_days": _env_int("CAMPAIGN_DURATION_DAYS", "30"),
	"max_campaigns_per_account": _env_int("MAX_CAMPAIGNS_PER_USER", "10"),
	"default_page_size": 10,
	"max_page_size": 100,
})

# -------------------------------- Billing --------------------------------- #
BILLING_SETTINGS: Mapping[str, float | int | str] = MappingProxyType({
	"unit_price_cents": int(round(_env_float("DEFAULT_CAMPAIGN_PRICE_EUR", "200") * 100)),
	"vat_rate": _env_float("VAT_RATE", "0.22"),
	"currency": os.getenv("BILLING_CURRENCY", "eur"),
})

# -------------------------------- Stripe ---------------------------------- #
STRIPE_SETTINGS: Mapping[str, str | int] = MappingProxyType({
	"secret_key": os.getenv("STRIPE_SECRET_KEY", ""),
	"webhook_secret": os.getenv("STRIPE_WEBHOOK_SECRET", ""),
	# Max age (seconds) of a signed webhook timestamp.
	"webhook_tolerance_seconds": _env_int("STRIPE_WEBHOOK_TOLERANCE", "300"),
	"success_url": os.getenv(
		"CHECKOUT_SUCCESS_URL",
		API_BASE_URL.replace("/api/v1", "") + "/checkout/success?session_id={CHECKOUT_SESSION_ID}",
	),
	"cancel_url": os.getenv("CHECKOUT_CANCEL_URL", API_BASE_URL.replace("/api/v1", "") + "/checkout/cancel"),
})

# --------------------------- Ad account linking --------------------------- #
ADS_MANAGER_CUSTOMER_ID: Final[str] = os.getenv("MCC_CUSTOMER_ID", "0000000000").replace("-", "")

LINK_SYNC_SETTINGS: Mapping[str, int | float] = MappingProxyType({
	"enabled": int(os.getenv("ENABLE_LINK_SYNC", "1") == "1"),
	"initial_delay_seconds": _env_float("LINK_SYNC_INITIAL_DELAY", "60"),
	"max_attempts": _env_int("LINK_SYNC_MAX_ATTEMPTS", "10"),
	"linked_recheck_seconds": _env_float("LINK_SYNC_LINKED_RECHECK", "21600"),  # 0 disables
	"poll_timeout_seconds": 5.0,
})

# ----------------------------- Circuit Breaker ---------------------------- #
CIRCUIT_BREAKER: Mapping[str, int | float] = MappingProxyType({
	"failure_threshold": 5,          # Consecutive failures before OPEN
	"open_cooldown_seconds": 300,    # Stay OPEN for 5 minutes
	"half_open_probe_count": 3,      # Probes allowed in HALF_OPEN
})

# --------------------------------- Backoff -------------------------------- #
# Delay between link-status polls of a still-PENDING account.
BACKOFF_POLICY: Mapping[str, int | float] = MappingProxyType({
	"base_seconds": 60,
	"factor": 2,
	"max_seconds": 3600,
	"jitter_pct": 0.10,
})

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: Mapping[str, object] = MappingProxyType({
	"priorities": MappingProxyType({"high": 0, "normal": 5, "low": 10}),
	"warn_depth": 1000,
	"max_in_memory": 5000,
	"use_redis": os.getenv("USE_REDIS_QUEUE", "false").lower() in ("1", "true", "yes"),
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"redis_ready_key": "adplatform:link_sync:ready",
	"redis_scheduled_key": "adplatform:link_sync:scheduled",
	"redis_health_check_timeout": 2.0,
})

__all__ = [
	"API_BASE_URL",
	"MOCK_FAILURE_RATE",
	"CAMPAIGN_SETTINGS",
	"BILLING_SETTINGS",
	"STRIPE_SETTINGS",
	"ADS_MANAGER_CUSTOMER_ID",
	"LINK_SYNC_SETTINGS",
	"CIRCUIT_BREAKER",
	"BACKOFF_POLICY",
	"QUEUE_SETTINGS",
]
