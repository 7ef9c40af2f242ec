"""
Prometheus metrics for the ZPay service.

Tracks:
- HTTP request counts and latency
- API key usage increments and license activations
- Payment automation API calls
- Stripe API calls
- Webhook test deliveries
- Phone verification codes sent
"""
from prometheus_client import Counter, Histogram

# HTTP metrics
http_requests_total = Counter(
    "zpay_http_requests_total",
    "Total HTTP requests handled",
    ["method", "status_code"],
)

http_request_duration_seconds = Histogram(
    "zpay_http_request_duration_seconds",
    "HTTP request duration in seconds",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Licensing metrics
api_key_usage_increments_total = Counter(
    "zpay_api_key_usage_increments_total",
    "Usage reports received from self-hosted instances",
    ["mode"],  # reported, increment
)

license_activations_total = Counter(
    "zpay_license_activations_total",
    "License activation attempts",
    ["status"],  # issued, rejected, limit_exceeded
)

# Payment automation API metrics
payment_api_requests_total = Counter(
    "zpay_payment_api_requests_total",
    "Requests sent to the payment automation API",
    ["endpoint", "status"],  # status: HTTP code or "error"
)

payment_api_duration_seconds = Histogram(
    "zpay_payment_api_duration_seconds",
    "Payment automation API call duration in seconds",
    ["endpoint"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)

# Stripe API metrics
stripe_api_requests_total = Counter(
    "zpay_stripe_api_requests_total",
    "Total Stripe API requests",
    ["operation", "status"],
)

# Webhook metrics
webhook_test_deliveries_total = Counter(
    "zpay_webhook_test_deliveries_total",
    "Webhook test deliveries",
    ["status"],  # success, failed, error
)

# OTP metrics
otp_sent_total = Counter(
    "zpay_otp_sent_total",
    "Phone verification codes sent",
    ["status"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_http_request(method: str, status_code: int, duration_seconds: float) -> None:
        """Record a handled HTTP request."""
        http_requests_total.labels(method=method, status_code=str(status_code)).inc()
        http_request_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_usage_increment(mode: str) -> None:
        """Record an API key usage report."""
        api_key_usage_increments_total.labels(mode=mode).inc()

    @staticmethod
    def record_license_activation(status: str) -> None:
        """Record a license activation attempt."""
        license_activations_total.labels(status=status).inc()

    @staticmethod
    def record_payment_api_call(endpoint: str, status: str, duration_seconds: float) -> None:
        """Record a payment automation API call."""
        payment_api_requests_total.labels(endpoint=endpoint, status=status).inc()
        payment_api_duration_seconds.labels(endpoint=endpoint).observe(duration_seconds)

    @staticmethod
    def record_stripe_api_call(operation: str, status: str) -> None:
        """Record Stripe API call."""
        stripe_api_requests_total.labels(operation=operation, status=status).inc()

    @staticmethod
    def record_webhook_test(status: str) -> None:
        webhook_test_deliveries_total.labels(status=status).inc()

    @staticmethod
    def record_otp_sent(status: str) -> None:
        otp_sent_total.labels(status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
