"""ZPay: dashboard and admin API for a Zcash payment-processing service."""

__version__ = "0.1.0"
