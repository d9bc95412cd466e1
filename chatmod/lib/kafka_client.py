"""
Kafka client for moderator alerts.
Flags that need fast human attention are published to moderation-alerts,
keyed by message id. Alerts that cannot be delivered are wrapped and sent
to the dead letter topic so nothing is silently lost.
"""
import json
import logging
from typing import Any, Dict, Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError

from chatmod.lib.timeutils import now_ms

logger = logging.getLogger(__name__)

ALERT_TOPIC = 'moderation-alerts'
DLQ_TOPIC = 'dlq-stream'

SEND_TIMEOUT_SECONDS = 10


def _encode(value: Dict[str, Any]) -> bytes:
    return json.dumps(value, default=str).encode('utf-8')


class MessageBroker:
    """Alert producer. The Kafka connection is opened on first publish."""

    def __init__(self, bootstrap_servers: str, producer: Optional[KafkaProducer] = None):
        self.bootstrap_servers = bootstrap_servers
        self.producer = producer

    def _connect(self) -> KafkaProducer:
        if self.producer is None:
            self.producer = KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=_encode,
                key_serializer=lambda k: k.encode('utf-8') if k else None,
                acks='all',
                retries=3,
                # Keep alerts for one message in order
                max_in_flight_requests_per_connection=1
            )
            logger.info(f"Alert producer connected to {self.bootstrap_servers}")
        return self.producer

    def publish(self, topic: str, payload: Dict[str, Any], key: Optional[str] = None) -> bool:
        """Send one record and wait for the broker ack. False on any Kafka error."""
        try:
            metadata = self._connect().send(topic, value=payload, key=key).get(timeout=SEND_TIMEOUT_SECONDS)
        except KafkaError as e:
            logger.error(f"Publish to {topic} failed: {e}")
            return False
        logger.debug(f"Published to {topic} [{metadata.partition}] @ {metadata.offset}")
        return True

    def publish_moderation_alert(self, alert: Dict[str, Any]) -> bool:
        """True when the alert reached moderation-alerts; otherwise it is dead-lettered."""
        if self.publish(ALERT_TOPIC, alert, key=alert.get('message_id')):
            return True
        self.publish_dlq(alert, f"undeliverable on {ALERT_TOPIC}")
        return False

    def publish_dlq(self, alert: Dict[str, Any], reason: str) -> bool:
        envelope = {
            'topic': ALERT_TOPIC,
            'alert': alert,
            'reason': reason,
            'failed_at_ms': now_ms(),
        }
        return self.publish(DLQ_TOPIC, envelope, key=alert.get('message_id'))

    def close(self):
        if self.producer is not None:
            self.producer.flush()
            self.producer.close()
            self.producer = None
            logger.info("Alert producer closed")


def create_broker(config=None) -> Optional[MessageBroker]:
    """Broker from configuration, or None when alerts are disabled."""
    from chatmod.lib.config import settings as default_settings

    config = config or default_settings
    if not config.kafka_bootstrap_servers:
        logger.info("KAFKA_BOOTSTRAP_SERVERS not set, moderator alerts are logged only")
        return None
    return MessageBroker(config.kafka_bootstrap_servers)
