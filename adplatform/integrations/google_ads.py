"""
Google Ads customer-client link integration (simulated).

A real implementation would create a ``CustomerClientLink`` under the manager
account and read it back through GAQL::

    SELECT customer_client_link.resource_name, customer_client_link.status
    FROM customer_client_link
    WHERE customer_client_link.resource_name = '<resource name>'

We keep link state in process memory so the link flow and background sync
can run end to end without credentials.
"""
import random
import threading
from typing import Dict, Optional

from adplatform.config import ADS_MANAGER_CUSTOMER_ID, MOCK_FAILURE_RATE
from adplatform.integrations.base import AdAccountGateway
from adplatform.utils import get_logger

logger = get_logger(__name__)

EXTERNAL_LINK_STATUSES = ("PENDING", "ACTIVE", "INACTIVE", "REFUSED", "CANCELED", "CANCELLED", "TERMINATED")


class GoogleAdsSimulatedError(RuntimeError):
    pass


class SimulatedGoogleAdsGateway(AdAccountGateway):
    """In-memory stand-in for the Google Ads API link endpoints."""

    def __init__(
        self,
        manager_customer_id: str = ADS_MANAGER_CUSTOMER_ID,
        failure_rate: float = MOCK_FAILURE_RATE,
        accept_after_polls: Optional[int] = None,
    ):
        self.manager_customer_id = manager_customer_id
        self.failure_rate = failure_rate
        # Auto-accept a pending invitation after this many status polls
        self.accept_after_polls = accept_after_polls
        self._links: Dict[str, str] = {}
        self._polls: Dict[str, int] = {}
        self._seq = 0
        self._lock = threading.Lock()
        self.logger = get_logger("integration.google_ads")

    def _maybe_fail(self, operation: str) -> None:
        if self.failure_rate and random.random() < self.failure_rate:
            self.logger.warning("Simulated Google Ads API failure", operation=operation)
            raise GoogleAdsSimulatedError(f"simulated failure during {operation}")

    def send_link_invitation(self, customer_id: str) -> str:
        self._maybe_fail("send_link_invitation")
        with self._lock:
            self._seq += 1
            resource_name = f"customers/{self.manager_customer_id}/customerClientLinks/{customer_id}~{self._seq}"
            self._links[resource_name] = "PENDING"
            self._polls[resource_name] = 0
        self.logger.info("Link invitation sent (mock)", customer_id=customer_id, resource_name=resource_name)
        return resource_name

    def fetch_link_status(self, resource_name: str) -> str:
        self._maybe_fail("fetch_link_status")
        with self._lock:
            if resource_name not in self._links:
                return "UNKNOWN"
            self._polls[resource_name] += 1
            status = self._links[resource_name]
            if (
                status == "PENDING"
                and self.accept_after_polls is not None
                and self._polls[resource_name] >= self.accept_after_polls
            ):
                status = self._links[resource_name] = "ACTIVE"
        self.logger.debug("Link status fetched (mock)", resource_name=resource_name, status=status)
        return status

    def set_status(self, resource_name: str, status: str) -> None:
        """Simulate the account owner accepting, refusing or revoking the link."""
        if status not in EXTERNAL_LINK_STATUSES:
            raise ValueError(f"Unknown link status {status}")
        with self._lock:
            self._links[resource_name] = status
