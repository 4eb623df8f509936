"""Self-serve video-ad campaign platform.

The package holds the campaign lifecycle, the payment ledger and the
reconcilers that keep both in step with the payment processor and the
external ad account.
"""

__all__: list[str] = []
