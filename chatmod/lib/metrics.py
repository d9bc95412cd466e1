"""
Prometheus metrics exporter
"""
import logging
import time
from functools import wraps

from prometheus_client import Counter, Histogram, start_http_server

from chatmod.lib.config import settings

logger = logging.getLogger(__name__)

# Counters
messages_classified = Counter('chatmod_messages_classified_total', 'Messages classified', ['verdict', 'reason'])
messages_submitted = Counter('chatmod_messages_submitted_total', 'Message submissions', ['outcome'])
flags_created = Counter('chatmod_flags_created_total', 'Flags written', ['reason', 'severity', 'auto'])
flags_reviewed = Counter('chatmod_flags_reviewed_total', 'Flags reviewed', ['action'])
rate_limited = Counter('chatmod_rate_limited_total', 'Sends rejected by the rate limiter')
secondary_failures = Counter(
    'chatmod_secondary_effect_failures_total',
    'Best-effort side effects that failed',
    ['effect']
)
moderation_actions = Counter('chatmod_user_actions_total', 'User moderation actions', ['action'])
alerts_published = Counter('chatmod_alerts_total', 'Moderator alerts', ['delivered'])

# Histograms (for latency)
aggregation_latency = Histogram('chatmod_aggregation_duration_seconds', 'Analytics duration', ['stage'])


class MetricsExporter:
    """Prometheus metrics exporter"""

    def __init__(self, port: int = 8000):
        self.port = port
        self.server_started = False

    def start(self):
        """Start Prometheus HTTP server"""
        if not self.server_started:
            start_http_server(self.port)
            self.server_started = True
            logger.info(f"Prometheus metrics server started on port {self.port}")

    @staticmethod
    def track_duration(stage: str):
        """Decorator to time an async aggregation stage"""
        def decorator(func):
            @wraps(func)
            async def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    result = await func(*args, **kwargs)
                    aggregation_latency.labels(stage=stage).observe(time.time() - start_time)
                    return result
                except Exception:
                    aggregation_latency.labels(stage=f"{stage}_error").observe(time.time() - start_time)
                    raise
            return wrapper
        return decorator

    @staticmethod
    def record_classification(verdict: str, reason: str):
        messages_classified.labels(verdict=verdict, reason=reason or 'none').inc()

    @staticmethod
    def record_submission(outcome: str):
        messages_submitted.labels(outcome=outcome).inc()

    @staticmethod
    def record_flag(reason: str, severity: str, auto_flagged: bool):
        flags_created.labels(reason=reason, severity=severity, auto=str(auto_flagged).lower()).inc()

    @staticmethod
    def record_review(action: str):
        flags_reviewed.labels(action=action).inc()

    @staticmethod
    def record_rate_limited():
        rate_limited.inc()

    @staticmethod
    def record_secondary_failure(effect: str):
        """Count a best-effort write that was logged and dropped"""
        secondary_failures.labels(effect=effect).inc()

    @staticmethod
    def record_user_action(action: str):
        moderation_actions.labels(action=action).inc()

    @staticmethod
    def record_alert(delivered: bool):
        alerts_published.labels(delivered=str(delivered).lower()).inc()


# Singleton instance
metrics = MetricsExporter(port=settings.metrics_port)
