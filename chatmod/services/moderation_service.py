"""
Core moderation orchestration service.
Runs message submission (validation, rate limit, classification, storage,
flagging, counters, moderator alerts) and the post-write safety net that
classifies messages written without going through submission.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from chatmod.lib.errors import ChatModError, NotFoundError, StoreError
from chatmod.lib.kafka_client import MessageBroker
from chatmod.lib.metrics import MetricsExporter
from chatmod.lib.record_store import RecordStore
from chatmod.lib.timeutils import now_ms
from chatmod.models.enums import ActivityAction, FlagReason, Severity, Verdict
from chatmod.models.message import FlaggedMessage, Message, ModerationRule
from chatmod.services.classifier import Classification, Classifier
from chatmod.services.flag_store import FlagStore
from chatmod.services.heuristics import sanitize_message, screen_message, validate_message
from chatmod.services.rate_limiter import SlidingWindowRateLimiter
from chatmod.services.snapshot import MESSAGES_PATH
from chatmod.services.user_manager import UserManager

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    """Outcome of submitting one message."""
    accepted: bool
    classification: Classification
    message: Optional[Message] = None
    flag: Optional[FlaggedMessage] = None
    flag_error: Optional[str] = None
    steps: List[str] = field(default_factory=list)


class ModerationService:
    """
    Central orchestration for chat moderation.
    In-band classification uses the tighter length ceiling; the safety net
    uses the server-side one.
    """

    ALERT_SEVERITIES = {Severity.MEDIUM, Severity.HIGH}

    def __init__(
        self,
        store: RecordStore,
        flag_store: FlagStore,
        user_manager: UserManager,
        rate_limiter: SlidingWindowRateLimiter,
        classifier: Optional[Classifier] = None,
        server_classifier: Optional[Classifier] = None,
        broker: Optional[MessageBroker] = None,
        message_max_length: int = 500,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.flag_store = flag_store
        self.user_manager = user_manager
        self.rate_limiter = rate_limiter
        self.classifier = classifier or Classifier(max_length=800)
        self.server_classifier = server_classifier or Classifier(max_length=1000)
        self.broker = broker
        self.message_max_length = message_max_length
        self.clock = clock

        # Stored messages the safety net has handled; pruned as messages disappear
        self._seen: Set[str] = set()
        self._safety_queue: Optional[asyncio.Queue] = None

    def apply_rules(self, rules: Iterable[ModerationRule]) -> None:
        """Rebuild both classifiers from stored rules, keeping their ceilings."""
        rules = list(rules)
        self.classifier = Classifier.from_rules(rules, max_length=self.classifier.max_length)
        self.server_classifier = Classifier.from_rules(rules, max_length=self.server_classifier.max_length)
        logger.info(f"Classifiers rebuilt from {len(rules)} moderation rules")

    async def submit_message(
        self,
        author_id: str,
        author_display_name: str,
        text: str,
        channel_id: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Main entry point for sending a message.
        Raises ValidationError or RateLimitExceeded before anything is stored.
        Invalid sends do not use up the sender's rate limit.
        """
        steps: List[str] = []

        # Step 1: Basic validation
        validate_message(text, self.message_max_length)
        steps.append("validation")

        # Step 2: Rate limit
        await self.rate_limiter.enforce(author_id)
        steps.append("rate_limit")

        # Step 3: Classify
        classification = self.classifier.classify(text, author_id)
        MetricsExporter.record_classification(
            classification.verdict.value,
            classification.reason.value if classification.reason else None,
        )
        steps.append(f"classify:{classification.verdict.value}")

        if classification.should_delete:
            MetricsExporter.record_submission("rejected")
            logger.info(f"Rejected message from {author_id}: {classification.reason.value}")
            return SubmissionResult(accepted=False, classification=classification, steps=steps)

        # Step 4: Store sanitized message
        message_id = await self.store.append(MESSAGES_PATH)
        message = Message(
            id=message_id,
            text=sanitize_message(text),
            author_id=author_id,
            author_display_name=author_display_name or "Anonymous",
            timestamp_ms=self.clock(),
            channel_id=channel_id,
            validated=True,
        )
        await self.store.write(f"{MESSAGES_PATH}/{message_id}", message.model_dump(mode="json"))
        steps.append("stored")

        # Step 5: Best-effort counters and activity
        await self.user_manager.increment_message_count(author_id)
        await self.user_manager.log_activity(author_id, ActivityAction.MESSAGE_SENT, {"message_id": message_id})

        result = SubmissionResult(accepted=True, classification=classification, message=message, steps=steps)

        # Step 6: Flag for review, never blocking delivery
        if classification.verdict == Verdict.FLAG:
            await self._auto_flag(message, classification, result)

        MetricsExporter.record_submission("flagged" if result.flag else "accepted")
        return result

    async def _auto_flag(self, message: Message, classification: Classification, result: SubmissionResult) -> None:
        try:
            result.flag = await self.flag_store.flag_message(
                message, classification.reason, classification.severity
            )
            result.steps.append("flagged")
        except StoreError as e:
            logger.error(f"Failed to flag message {message.id}: {e}")
            MetricsExporter.record_secondary_failure("flag_write")
            result.flag_error = str(e)
            return

        await self.user_manager.increment_flag_count(message.author_id)
        await self.user_manager.log_activity(message.author_id, ActivityAction.MESSAGE_FLAGGED, {
            "message_id": message.id,
            "reason": classification.reason.value,
        })

        if result.flag.severity in self.ALERT_SEVERITIES:
            await self.send_alert(result.flag, classification)
            result.steps.append("alert")

    async def send_alert(self, flag: FlaggedMessage, classification: Optional[Classification] = None) -> bool:
        """Notify moderators about a flag. Logged only when no broker is configured."""
        alert = {
            "message_id": flag.id,
            "author_id": flag.author_id,
            "reason": flag.flag_reason.value,
            "severity": flag.severity.value,
            "rule_id": classification.rule_id if classification else None,
            "flagged_at_ms": flag.flagged_at_ms,
        }
        if self.broker is None:
            logger.info(f"Moderator alert: {alert}")
            return False
        delivered = await asyncio.to_thread(self.broker.publish_moderation_alert, alert)
        MetricsExporter.record_alert(delivered)
        return delivered

    # Safety net

    async def moderate_stored_message(self, message_id: str, data: Any) -> Optional[Classification]:
        """
        Classify a message written without submission and flag or remove it.
        Validated, already handled and already flagged messages are skipped.
        A message only counts as handled once its writes have landed.
        """
        if not isinstance(data, dict) or message_id in self._seen:
            return None
        try:
            message = Message(**{**data, "id": message_id})
        except ValueError as e:
            logger.warning(f"Skipping malformed message {message_id}: {e}")
            self._seen.add(message_id)
            return None

        if message.validated:
            self._seen.add(message_id)
            return None

        classification = self.server_classifier.classify(message.text, message.author_id)
        existing = await self.flag_store.get_flagged(message_id)
        if existing is not None:
            # Finish a removal interrupted after its flag write
            if classification.should_delete and existing.auto_flagged and not existing.reviewed:
                await self.flag_store.delete_message(message_id)
            else:
                self._seen.add(message_id)
            return None

        MetricsExporter.record_classification(
            classification.verdict.value,
            classification.reason.value if classification.reason else None,
        )
        if not classification.should_flag:
            self._seen.add(message_id)
            return classification

        flag = await self.flag_store.flag_message(message, classification.reason, classification.severity)
        if classification.should_delete:
            await self.flag_store.delete_message(message_id)
            logger.info(f"Safety net removed message {message_id} ({classification.reason.value})")
        else:
            # Only messages still stored are remembered
            self._seen.add(message_id)

        await self.user_manager.increment_flag_count(message.author_id)
        if flag.severity in self.ALERT_SEVERITIES:
            await self.send_alert(flag, classification)
        return classification

    async def start_safety_net(self) -> Callable[[], None]:
        """
        Subscribe to messages/ and moderate unhandled messages on a worker task.
        Change notifications only queue message ids, so removals made by the
        worker never re-enter it. Returns a handle that stops both.
        """
        queue: asyncio.Queue = asyncio.Queue()
        queued: Set[str] = set()

        async def on_messages(data):
            data = data if isinstance(data, dict) else {}
            # Forget messages that are gone
            self._seen.intersection_update(data)
            for message_id, item in data.items():
                if message_id not in self._seen and message_id not in queued:
                    queued.add(message_id)
                    queue.put_nowait((message_id, item))

        async def worker():
            while True:
                message_id, item = await queue.get()
                try:
                    await self.moderate_stored_message(message_id, item)
                except ChatModError as e:
                    # Left unhandled; the next change notification queues it again
                    logger.error(f"Safety net failed on message {message_id}: {e}")
                finally:
                    queued.discard(message_id)
                    queue.task_done()

        self._safety_queue = queue
        task = asyncio.create_task(worker())
        unsubscribe = await self.store.subscribe(MESSAGES_PATH, on_messages)
        logger.info("Safety net subscribed to messages")

        def stop() -> None:
            unsubscribe()
            task.cancel()
            self._safety_queue = None

        return stop

    async def drain_safety_net(self) -> None:
        """Wait until every queued message has been moderated."""
        if self._safety_queue is not None:
            await self._safety_queue.join()

    # Moderator actions

    async def flag_manually(
        self,
        message_id: str,
        flagged_by: str,
        reason: FlagReason = FlagReason.MANUAL,
        severity: Severity = Severity.MEDIUM,
    ) -> FlaggedMessage:
        message = await self._require_message(message_id)
        flag = await self.flag_store.flag_message(
            message, reason, severity, flagged_by_user_id=flagged_by, auto_flagged=False
        )
        await self.user_manager.increment_flag_count(message.author_id)
        await self.user_manager.log_activity(flagged_by, ActivityAction.USER_REPORTED, {
            "message_id": message_id,
            "target_user": message.author_id,
            "reason": FlagReason(reason).value,
        })
        return flag

    async def delete_message(self, message_id: str, deleted_by: str) -> None:
        await self._require_message(message_id)
        await self.flag_store.delete_message(message_id)
        logger.info(f"Message {message_id} deleted by {deleted_by}")
        await self.user_manager.log_activity(deleted_by, ActivityAction.MESSAGE_DELETED, {"message_id": message_id})

    def screen_message(self, text: str) -> str:
        """Strict client-side screening; raises ValidationError."""
        return screen_message(text, self.message_max_length)

    async def _require_message(self, message_id: str) -> Message:
        data = await self.store.read(f"{MESSAGES_PATH}/{message_id}")
        if not data:
            raise NotFoundError(f"No message {message_id}")
        return Message(**{**data, "id": message_id})
