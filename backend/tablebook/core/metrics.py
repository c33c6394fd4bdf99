"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at the /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    "tablebook_booking_attempts_total",
    "Booking creation attempts",
    ["status"],  # success, conflict, rejected
)

booking_latency = Histogram(
    "tablebook_booking_latency_seconds",
    "Booking creation latency",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

booking_transitions = Counter(
    "tablebook_booking_transitions_total",
    "Booking lifecycle transitions",
    ["to_status"],
)

schedule_lock_retries = Counter(
    "tablebook_schedule_lock_retries_total",
    "Optimistic lock retries on table schedules",
)

# Payment metrics
payment_transitions = Counter(
    "tablebook_payment_transitions_total",
    "Payment status transitions",
    ["to_status", "channel"],  # channel: verify, webhook, refund, reconcile
)

gateway_calls = Counter(
    "tablebook_gateway_calls_total",
    "Calls made to the payment gateway",
    ["operation", "result"],  # result: ok, rejected, timeout, error
)

gateway_latency = Histogram(
    "tablebook_gateway_latency_seconds",
    "Payment gateway call latency",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_events = Counter(
    "tablebook_webhook_events_total",
    "Gateway webhook deliveries",
    ["event_type", "result"],  # result: processed, duplicate, ignored, rejected
)

# Offer metrics
offer_redemptions = Counter(
    "tablebook_offer_redemptions_total",
    "Offer application outcomes",
    ["result"],  # applied, rejected
)

# Event sink
event_publish_errors = Counter(
    "tablebook_event_publish_errors_total",
    "Booking events that could not be published",
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def record_booking_attempt(status: str):
    """Record booking attempt. Status: success, conflict, rejected"""
    booking_attempts.labels(status=status).inc()


def record_booking_transition(to_status: str):
    booking_transitions.labels(to_status=to_status).inc()


def record_payment_transition(to_status: str, channel: str):
    payment_transitions.labels(to_status=to_status, channel=channel).inc()


def record_gateway_call(operation: str, result: str):
    gateway_calls.labels(operation=operation, result=result).inc()


def record_webhook(event_type: str, result: str):
    webhook_events.labels(event_type=event_type, result=result).inc()


def record_offer_redemption(applied: bool):
    offer_redemptions.labels(result="applied" if applied else "rejected").inc()
