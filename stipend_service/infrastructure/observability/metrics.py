"""Prometheus metrics for stipend creation, deductions, settlement and collaborator health"""

from decimal import Decimal

from prometheus_client import Counter, Histogram

# Ledger metrics
stipends_created_counter = Counter(
    "stipend_created_total",
    "Stipends created",
    ["stipend_class"],  # full-scholarship | self-funded | partial
)

deductions_applied_counter = Counter(
    "stipend_deductions_applied_total",
    "Deduction rows persisted",
    ["type_tag"],
)

deducted_amount_counter = Counter(
    "stipend_deducted_amount_total",
    "Sum of deducted amounts",
)

# Transfer metrics
transfer_outcome_counter = Counter(
    "stipend_transfer_outcome_total",
    "Settlement attempts by resulting transaction status",
    ["status"],  # SUCCESS | FAILED | CANCELLED
)

settlement_latency_histogram = Histogram(
    "settlement_latency_seconds",
    "Settlement oracle response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

settlement_timeout_counter = Counter(
    "settlement_timeouts_total",
    "Settlement calls abandoned at the request deadline",
)

# Collaborator metrics
banking_lookup_failures_counter = Counter(
    "banking_lookup_failures_total",
    "Failed bank detail lookups",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_stipend_created(stipend_class: str) -> None:
    stipends_created_counter.labels(stipend_class=stipend_class).inc()


def record_deductions(type_tags_and_amounts) -> None:
    """Count persisted deductions by type and add their amounts to the running total"""
    total = Decimal("0")
    for type_tag, amount in type_tags_and_amounts:
        deductions_applied_counter.labels(type_tag=type_tag).inc()
        total += amount
    if total > 0:
        deducted_amount_counter.inc(float(total))


def record_transfer_outcome(status: str) -> None:
    transfer_outcome_counter.labels(status=status).inc()
