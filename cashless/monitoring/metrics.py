"""
Prometheus metrics for settlement monitoring.

Tracks:
- Order creation and status transitions
- Settlement outcomes and duration
- PIN verification results
- Stock movements
- Card scan attempts
"""
import time

from prometheus_client import Counter, Histogram

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total number of orders created",
)

order_amount = Histogram(
    "order_amount",
    "Order totals in currency units",
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
)

order_transitions_total = Counter(
    "order_transitions_total",
    "Total order status transitions",
    ["from_status", "to_status"],
)

# Settlement metrics
settlement_attempts_total = Counter(
    "settlement_attempts_total",
    "Total settlement attempts",
    ["outcome", "payer_kind"],  # outcome: completed or the error code
)

settlement_duration_seconds = Histogram(
    "settlement_duration_seconds",
    "Settlement duration in seconds (including lock waits)",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Credential metrics
pin_verifications_total = Counter(
    "pin_verifications_total",
    "Total PIN verifications",
    ["result"],  # match, mismatch, malformed
)

# Inventory metrics
stock_movements_total = Counter(
    "stock_movements_total",
    "Total stock movement records written",
    ["change_type"],
)

stock_units_moved_total = Counter(
    "stock_units_moved_total",
    "Total stock units moved",
    ["change_type"],
)

# Card reader metrics
card_scans_total = Counter(
    "card_scans_total",
    "Total card scan attempts",
    ["result"],  # accepted, timeout
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_created(total_amount: float) -> None:
        """Record a new order."""
        orders_created_total.inc()
        order_amount.observe(total_amount)

    @staticmethod
    def record_transition(from_status: str, to_status: str) -> None:
        """Record a status transition."""
        order_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def record_settlement(outcome: str, payer_kind: str, duration_seconds: float) -> None:
        """Record a settlement attempt."""
        settlement_attempts_total.labels(outcome=outcome, payer_kind=payer_kind).inc()
        settlement_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_pin_verification(result: str) -> None:
        """Record a PIN verification result."""
        pin_verifications_total.labels(result=result).inc()

    @staticmethod
    def record_stock_movement(change_type: str, units: int) -> None:
        """Record a stock movement."""
        stock_movements_total.labels(change_type=change_type).inc()
        stock_units_moved_total.labels(change_type=change_type).inc(abs(units))

    @staticmethod
    def record_card_scan(result: str) -> None:
        """Record the outcome of a card scan attempt."""
        card_scans_total.labels(result=result).inc()


class Timer:
    """Measure elapsed wall-clock time."""

    def __init__(self) -> None:
        self.started = time.perf_counter()

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started


# Export singleton instance
metrics = MetricsCollector()
