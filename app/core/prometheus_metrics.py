from typing import Optional
from prometheus_client import Counter, Histogram, Info, generate_latest
from prometheus_client.core import CollectorRegistry
import logging

logger = logging.getLogger(__name__)

# Prometheus Registry
REGISTRY = CollectorRegistry()

# Service call metrics
service_requests_total = Counter(
    'fleet_service_requests_total',
    'Total fleet service calls',
    ['status', 'service', 'method'],
    registry=REGISTRY
)

service_duration_seconds = Histogram(
    'fleet_service_duration_seconds',
    'Fleet service call duration in seconds',
    ['service', 'method'],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=REGISTRY
)

# Automation metrics
automation_events_total = Counter(
    'fleet_automation_events_total',
    'Automation pass outcomes by kind',
    ['event'],
    registry=REGISTRY
)

notifications_total = Counter(
    'fleet_notifications_total',
    'Email notifications by outcome',
    ['kind', 'status'],
    registry=REGISTRY
)

system_info = Info(
    'fleet_reservations_info',
    'System information',
    registry=REGISTRY
)

class PrometheusMetricsCollector:
    """Thin facade over the fleet Prometheus registry"""

    def __init__(self):
        system_info.info({
            'version': '1.0.0',
            'service': 'fleet-reservations'
        })

    def record_service_call(
        self,
        service_name: str,
        method_name: str,
        duration_seconds: float,
        success: bool,
    ):
        status = 'success' if success else 'error'

        service_requests_total.labels(
            status=status,
            service=service_name,
            method=method_name
        ).inc()

        service_duration_seconds.labels(
            service=service_name,
            method=method_name
        ).observe(duration_seconds)

    def record_automation_event(self, event: str, count: int = 1):
        """event: trips_auto_completed | reminders_sent | reminders_failed | maintenance_alerts_sent | ..."""
        if count > 0:
            automation_events_total.labels(event=event).inc(count)

    def record_notification(self, kind: Optional[str], success: bool):
        notifications_total.labels(
            kind=kind or 'generic',
            status='sent' if success else 'failed'
        ).inc()

    def get_prometheus_metrics(self) -> bytes:
        """Get Prometheus metrics in text format"""
        return generate_latest(REGISTRY)

# Global instance
prometheus_collector = PrometheusMetricsCollector()
