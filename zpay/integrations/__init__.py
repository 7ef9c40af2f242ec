"""Clients for services outside this repository."""
from .email import EmailSender
from .payment_api import ExternalResponse, PaymentApiClient
from .sms import SmsSender
from .stripe_client import StripeClient, StripeError

__all__ = [
    "EmailSender",
    "ExternalResponse",
    "PaymentApiClient",
    "SmsSender",
    "StripeClient",
    "StripeError",
]
