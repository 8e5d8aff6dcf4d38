"""Nexvoy booking core: lifecycle, cancellation fees, refunds and expiry."""

__version__ = "0.1.0"
