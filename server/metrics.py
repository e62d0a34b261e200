"""
Prometheus Metrics Module

Provides instrumentation for the voting core and the API:
- Vote mutations by action
- Transaction conflicts and exhausted retries
- Audit write failures and fallbacks
- API request counts and latency
- Error tracking

Usage:
    from server.metrics import metrics
    metrics.votes_recorded.labels(action="new_vote").inc()
"""

from prometheus_client import Counter, Histogram, generate_latest, REGISTRY


class BallotboxMetrics:
    """Centralized metrics for the voting service and API"""

    def __init__(self):
        # Vote metrics
        self.votes_recorded = Counter(
            'ballotbox_votes_recorded_total',
            'Vote mutations committed',
            ['action']  # new_vote/change_vote/delete_vote
        )

        self.option_changes = Counter(
            'ballotbox_option_changes_total',
            'Option list mutations committed',
            ['change']  # add/remove/rename
        )

        self.tally_reconciliations = Counter(
            'ballotbox_tally_reconciliations_total',
            'Tally reconciliations by outcome',
            ['outcome']  # clean/corrected
        )

        # Transaction metrics
        self.transaction_conflicts = Counter(
            'ballotbox_transaction_conflicts_total',
            'Transaction attempts that lost a race'
        )

        self.transaction_failures = Counter(
            'ballotbox_transaction_failures_total',
            'Transactions that exhausted their retries'
        )

        # Audit metrics
        self.audit_failures = Counter(
            'ballotbox_audit_failures_total',
            'Audit entries that could not be written to the audit collection',
            ['action']
        )

        self.audit_fallbacks = Counter(
            'ballotbox_audit_fallbacks_total',
            'Degraded audit records written to the local fallback file'
        )

        # API metrics
        self.api_requests = Counter(
            'ballotbox_api_requests_total',
            'Total API requests',
            ['endpoint', 'method', 'status_code']
        )

        self.api_request_duration = Histogram(
            'ballotbox_api_request_duration_seconds',
            'API request duration',
            ['endpoint', 'method'],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
        )

        # Error metrics
        self.errors = Counter(
            'ballotbox_errors_total',
            'Total errors by component and type',
            ['component', 'error_type']
        )

    def record_error(self, component: str, error: Exception):
        """Record an error

        Args:
            component: Component name (vote_service/gateway/api)
            error: Exception instance
        """
        error_type = type(error).__name__
        self.errors.labels(component=component, error_type=error_type).inc()


# Global metrics instance
metrics = BallotboxMetrics()


def get_metrics_text() -> str:
    """Get Prometheus metrics in text format

    Returns:
        Metrics text suitable for /metrics endpoint
    """
    return generate_latest(REGISTRY).decode('utf-8')
