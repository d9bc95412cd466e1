"""
Main pipeline orchestrator - wires everything together
"""
import asyncio
import logging
from typing import Optional

import uvicorn

from chatmod.lib.config import Settings, settings as default_settings
from chatmod.lib.errors import StoreError
from chatmod.lib.kafka_client import MessageBroker, create_broker
from chatmod.lib.metrics import metrics
from chatmod.lib.record_store import CounterStore, RecordStore, create_store
from chatmod.services.behavior_analyzer import BehaviorAnalyzer
from chatmod.services.chat_admin import ChatAdmin
from chatmod.services.chat_analytics import ChatAnalyticsAggregator
from chatmod.services.classifier import Classifier, initialize_rules
from chatmod.services.flag_store import REVIEW_DELETE_OP, FlagStore
from chatmod.services.moderation_effectiveness import ModerationEffectivenessAnalyzer
from chatmod.services.moderation_service import ModerationService
from chatmod.services.rate_limiter import SlidingWindowRateLimiter
from chatmod.services.reconciler import IntentLog, Reconciler
from chatmod.services.report_generator import ReportGenerator
from chatmod.services.risk_scorer import RiskScorer
from chatmod.services.user_manager import BAN_OP, UNBAN_OP, UserManager

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


class Pipeline:
    """End-to-end pipeline: stores, services and the safety-net subscription"""

    def __init__(
        self,
        config: Optional[Settings] = None,
        store: Optional[RecordStore] = None,
        counter_store: Optional[CounterStore] = None,
        broker: Optional[MessageBroker] = None,
    ):
        self.config = config or default_settings
        if store is None or counter_store is None:
            default_store, default_counters = create_store(self.config)
            store = store or default_store
            counter_store = counter_store or default_counters
        self.store = store
        self.counter_store = counter_store
        self.broker = broker if broker is not None else create_broker(self.config)

        # Intent log shared by every multi-key operation
        self.intent_log = IntentLog(self.store)

        self.flag_store = FlagStore(self.store, self.intent_log)
        self.user_manager = UserManager(self.store, self.intent_log, admin_emails=self.config.admin_emails)
        self.rate_limiter = SlidingWindowRateLimiter(
            self.counter_store,
            max_requests=self.config.rate_limit_max,
            window_seconds=self.config.rate_limit_window_seconds,
        )
        self.moderation_service = ModerationService(
            self.store,
            self.flag_store,
            self.user_manager,
            self.rate_limiter,
            classifier=Classifier(max_length=self.config.classifier_max_length),
            server_classifier=Classifier(max_length=self.config.server_max_length),
            broker=self.broker,
            message_max_length=self.config.message_max_length,
        )

        # Analytics
        self.risk_scorer = RiskScorer()
        self.behavior_analyzer = BehaviorAnalyzer(
            self.store, self.risk_scorer, timezone=self.config.analytics_timezone
        )
        self.chat_analytics = ChatAnalyticsAggregator(self.store, timezone=self.config.analytics_timezone)
        self.effectiveness = ModerationEffectivenessAnalyzer(self.store)
        self.chat_admin = ChatAdmin(self.store)
        self.report_generator = ReportGenerator(
            self.store, self.chat_analytics, self.effectiveness, self.behavior_analyzer
        )

        self.reconciler = Reconciler(self.intent_log, {
            BAN_OP: self.user_manager.apply_ban,
            UNBAN_OP: self.user_manager.apply_unban,
            REVIEW_DELETE_OP: self.flag_store.apply_review_delete,
        })

        self._unsubscribe = None
        self._purge_task: Optional[asyncio.Task] = None
        logger.info("Pipeline initialized")

    async def start(self):
        """Replay interrupted operations, load rules, start the safety net and counter purging"""
        replayed = await self.reconciler.reconcile()
        if replayed:
            logger.info(f"Replayed {replayed} pending operations")

        rules = await initialize_rules(self.store, max_length=self.config.server_max_length)
        self.moderation_service.apply_rules(rules)

        self._unsubscribe = await self.moderation_service.start_safety_net()
        self._purge_task = asyncio.create_task(self._purge_counters())
        logger.info("Pipeline started")

    async def purge_counters(self) -> int:
        try:
            purged = await self.counter_store.purge_expired()
        except StoreError as e:
            logger.error(f"Counter purge failed: {e}")
            return 0
        if purged:
            logger.info(f"Purged {purged} expired counters")
        return purged

    async def _purge_counters(self):
        while True:
            await asyncio.sleep(self.config.counter_purge_interval_seconds)
            await self.purge_counters()

    async def stop(self):
        logger.info("Shutting down pipeline...")
        if self._purge_task is not None:
            self._purge_task.cancel()
            self._purge_task = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.store.close()
        if self.broker is not None:
            self.broker.close()


async def serve(config: Settings):
    """Run the admin API (and with it the pipeline) until interrupted"""
    from chatmod.api.main import create_app

    pipeline = Pipeline(config)
    app = create_app(pipeline)
    server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=config.api_port, log_level=config.log_level.lower()))
    await server.serve()


def main():
    configure_logging(default_settings.log_level)

    # Start metrics server
    metrics.start()

    try:
        asyncio.run(serve(default_settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == '__main__':
    main()
