"""Prometheus metrics for monitoring payouts, withdrawals and rail performance"""

from prometheus_client import Counter, Histogram

# Withdrawal metrics
withdrawal_transition_counter = Counter(
    "returns_withdrawal_transitions_total",
    "Withdrawal status transitions",
    ["status"],  # requested | under_admin_review | approved | paid | rejected | failed
)

# Payout metrics
payout_outcome_counter = Counter(
    "returns_payout_outcomes_total",
    "Payout processing outcomes",
    ["outcome"],  # paid | failed
)

wallet_credit_paise_counter = Counter(
    "returns_wallet_credit_paise_total",
    "Paise credited to investor wallets by payouts",
)

payout_amount_bucket_counter = Counter(
    "returns_payout_amount_bucket",
    "Net payouts by size bucket",
    ["bucket"],  # <₹1k, ₹1k-₹10k, ₹10k-₹1L, ₹1L+
)

# Payment rail metrics
rail_latency_histogram = Histogram(
    "payment_rail_latency_seconds",
    "Payment rail transfer response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

rail_failure_counter = Counter(
    "payment_rail_failures_total",
    "Failed payment rail calls",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_withdrawal_transition(status: str) -> None:
    withdrawal_transition_counter.labels(status=status).inc()


def record_payout(paid: bool, net_paise: int = 0) -> None:
    """Record payout outcome and bucket the credited amount for distribution analysis"""
    if not paid:
        payout_outcome_counter.labels(outcome="failed").inc()
        return

    payout_outcome_counter.labels(outcome="paid").inc()
    wallet_credit_paise_counter.inc(net_paise)

    if net_paise < 100_000:
        bucket = "<₹1k"
    elif net_paise < 1_000_000:
        bucket = "₹1k-₹10k"
    elif net_paise < 10_000_000:
        bucket = "₹10k-₹1L"
    else:
        bucket = "₹1L+"

    payout_amount_bucket_counter.labels(bucket=bucket).inc()
