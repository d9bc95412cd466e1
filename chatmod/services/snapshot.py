"""
Point-in-time reads of the collections the analytics code aggregates over.
"""

import logging
from typing import Any, Dict, List

from chatmod.lib.record_store import RecordStore
from chatmod.models.message import FlaggedMessage, Message
from chatmod.models.user import UserProfile
from chatmod.services.flag_store import FlagStore

logger = logging.getLogger(__name__)

MESSAGES_PATH = "messages"
USERS_PATH = "users"


def parse_messages(data: Dict[str, Any]) -> List[Message]:
    """Messages sorted by timestamp; malformed records are skipped."""
    messages = []
    for message_id, item in (data or {}).items():
        if not isinstance(item, dict):
            continue
        try:
            messages.append(Message(**{**item, "id": message_id}))
        except ValueError as e:
            logger.warning(f"Skipping malformed message {message_id}: {e}")
    messages.sort(key=lambda m: m.timestamp_ms)
    return messages


def parse_users(data: Dict[str, Any]) -> Dict[str, UserProfile]:
    users = {}
    for uid, item in (data or {}).items():
        if not isinstance(item, dict):
            continue
        try:
            users[uid] = UserProfile(**{**item, "uid": uid})
        except ValueError as e:
            logger.warning(f"Skipping malformed user profile {uid}: {e}")
    return users


async def load_messages(store: RecordStore) -> List[Message]:
    return parse_messages(await store.read_children(MESSAGES_PATH))


async def load_users(store: RecordStore) -> Dict[str, UserProfile]:
    return parse_users(await store.read_children(USERS_PATH))


async def load_flags(store: RecordStore) -> List[FlaggedMessage]:
    return FlagStore.parse_all(await store.read_children(FlagStore.PATH))
