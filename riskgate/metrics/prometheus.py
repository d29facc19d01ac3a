"""
Prometheus Metrics

Defines all metrics exposed by the risk engine.
Metrics are critical for:
- Latency monitoring (checks run on the hot path of payments)
- Outcome rates (allow / warn / block)
- Operational health (check failures, persistence failures, fail-open)
"""

from prometheus_client import Counter, Histogram, Gauge


class RiskMetrics:
    """
    Container for all Prometheus metrics.

    Organized by category:
    - Evaluation metrics
    - Check metrics
    - Alert metrics
    - Failure metrics
    """

    def __init__(self):
        """Initialize all metrics."""

        # =====================================================================
        # Evaluation Metrics
        # =====================================================================
        self.evaluations_total = Counter(
            "riskgate_evaluations_total",
            "Total number of evaluations by outcome",
            labelnames=["outcome"],
        )

        self.evaluation_latency = Histogram(
            "riskgate_evaluation_latency_ms",
            "End-to-end evaluation latency in milliseconds",
            buckets=[5, 10, 25, 50, 75, 100, 150, 200, 300, 500, 1000],
        )

        self.risk_score_distribution = Histogram(
            "riskgate_risk_score",
            "Distribution of risk scores (0-100)",
            buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 95, 100],
        )

        # =====================================================================
        # Check Metrics
        # =====================================================================
        self.check_triggers = Counter(
            "riskgate_check_triggers_total",
            "Number of times each check triggered",
            labelnames=["check"],
        )

        self.check_failures = Counter(
            "riskgate_check_failures_total",
            "Number of checks that raised or timed out",
            labelnames=["check"],
        )

        # =====================================================================
        # Alert Metrics
        # =====================================================================
        self.alerts_total = Counter(
            "riskgate_alerts_total",
            "Fraud alerts created",
            labelnames=["alert_type", "severity"],
        )

        # =====================================================================
        # Failure Metrics
        # =====================================================================
        self.persistence_failures = Counter(
            "riskgate_persistence_failures_total",
            "Failed writes of activity records or alerts",
            labelnames=["kind"],
        )

        self.fail_open_total = Counter(
            "riskgate_fail_open_total",
            "Guarded requests allowed because evaluation failed",
        )

        # Component health
        self.component_health = Gauge(
            "riskgate_component_health",
            "Component health status (1=healthy, 0=unhealthy)",
            labelnames=["component"],
        )


# Global metrics instance
metrics = RiskMetrics()
