"""HTTP API for the ZPay dashboard."""
