"""
User management for the admin panel.
Profiles, roles, bans, suspensions, warnings, counters and the activity log.
Permissions are always derived from the role.
"""

import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from chatmod.lib.errors import ConflictError, InvalidArgument, NotFoundError, StoreError
from chatmod.lib.metrics import MetricsExporter
from chatmod.lib.record_store import RecordStore
from chatmod.lib.timeutils import MS_PER_DAY, MS_PER_HOUR, now_ms
from chatmod.models.enums import ActivityAction, BanType, UserRole, UserStatus
from chatmod.models.user import (
    ActiveUserCount, BanRecord, PermissionSet, UserActivity, UserProfile,
    UserStats, WarningRecord, permissions_for_role,
)
from chatmod.services.reconciler import IntentLog
from chatmod.services.snapshot import USERS_PATH, parse_users

logger = logging.getLogger(__name__)

BAN_OP = "ban"
UNBAN_OP = "unban"
SYSTEM_USER = "system"


class UserManager:
    """
    Admin-side user state management.
    Ban and unban each touch bans/ and users/ and run under an intent record.
    """

    BANS_PATH = "bans"
    ACTIVITY_PATH = "userActivity"

    MOST_ACTIVE_USERS = 10
    RECENT_ACTIVITY = 50

    def __init__(
        self,
        store: RecordStore,
        intent_log: IntentLog,
        admin_emails: Optional[Iterable[str]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.intent_log = intent_log
        self.admin_emails = {e.lower() for e in (admin_emails or [])}
        self.clock = clock

    # Profiles

    async def initialize_user(self, uid: str, email: str, display_name: Optional[str] = None) -> UserProfile:
        """Create the profile on first sign-in, otherwise refresh last activity."""
        existing = await self.get_user_profile(uid)
        now = self.clock()

        if existing is None:
            role = UserRole.ADMIN if self.is_admin_email(email) else UserRole.USER
            profile = UserProfile(
                uid=uid,
                email=email,
                display_name=display_name,
                role=role,
                permissions=permissions_for_role(role),
                created_at_ms=now,
                last_active_ms=now,
            )
            await self.store.write(self._user_path(uid), profile.model_dump(mode="json"))
            logger.info(f"Created profile for {uid} with role {role.value}")
            await self.log_activity(uid, ActivityAction.LOGIN, {"first_login": True})
            return profile

        await self.store.write(self._user_path(uid), {
            "last_active_ms": now,
            "display_name": display_name or existing.display_name,
        }, merge=True)
        await self.log_activity(uid, ActivityAction.LOGIN)
        return existing.model_copy(update={
            "last_active_ms": now,
            "display_name": display_name or existing.display_name,
        })

    async def get_user_profile(self, uid: str) -> Optional[UserProfile]:
        data = await self.store.read(self._user_path(uid))
        if not data:
            return None
        return UserProfile(**{**data, "uid": uid})

    async def list_users(self) -> List[UserProfile]:
        """All profiles, most recently active first."""
        users = parse_users(await self.store.read_children(USERS_PATH))
        return sorted(users.values(), key=lambda u: u.last_active_ms, reverse=True)

    async def monitor_users(self, callback: Callable[[List[UserProfile]], Any]) -> Callable[[], None]:
        async def on_change(data):
            users = parse_users(data if isinstance(data, dict) else {})
            result = callback(sorted(users.values(), key=lambda u: u.last_active_ms, reverse=True))
            if inspect.isawaitable(result):
                await result

        return await self.store.subscribe(USERS_PATH, on_change)

    async def update_user_role(self, uid: str, new_role: UserRole, updated_by: str) -> UserProfile:
        profile = await self._require_profile(uid)
        new_role = UserRole(new_role)
        permissions = permissions_for_role(new_role)

        await self.store.write(self._user_path(uid), {
            "role": new_role.value,
            "permissions": permissions.model_dump(),
        }, merge=True)

        MetricsExporter.record_user_action("role_updated")
        await self.log_activity(updated_by, ActivityAction.ROLE_UPDATED, {
            "target_user": uid,
            "new_role": new_role.value,
        })
        return profile.model_copy(update={"role": new_role, "permissions": permissions})

    # Bans

    async def ban_user(
        self,
        user_id: str,
        banned_by: str,
        reason: str,
        ban_type: BanType,
        duration_hours: Optional[float] = None,
    ) -> BanRecord:
        ban_type = BanType(ban_type)
        await self._require_profile(user_id)

        if ban_type == BanType.TEMPORARY and not (duration_hours and duration_hours > 0):
            raise InvalidArgument("temporary bans require a positive duration_hours")

        now = self.clock()
        active = await self._find_active_ban(user_id)
        if active is not None:
            if not active.is_expired(now):
                raise ConflictError(f"User {user_id} already has an active ban {active.id}")
            await self._lift_ban(active, SYSTEM_USER, "ban expired")

        ban_id = await self.store.append(self.BANS_PATH)
        ban = BanRecord(
            id=ban_id,
            user_id=user_id,
            banned_by_user_id=banned_by,
            reason=reason,
            type=ban_type,
            start_ms=now,
            end_ms=now + int(duration_hours * MS_PER_HOUR) if ban_type == BanType.TEMPORARY else None,
        )

        await self.intent_log.run(BAN_OP, {"user_id": user_id, "ban": ban.model_dump(mode="json")}, self.apply_ban)

        MetricsExporter.record_user_action("ban")
        logger.info(f"User {user_id} banned by {banned_by} ({ban_type.value})")
        await self.log_activity(banned_by, ActivityAction.USER_BANNED, {
            "target_user": user_id,
            "reason": reason,
            "type": ban_type.value,
            "duration_hours": duration_hours,
        })
        return ban

    async def unban_user(self, user_id: str, revoked_by: str, reason: str) -> BanRecord:
        """Revoke the user's single active ban."""
        active = await self._find_active_ban(user_id)
        if active is None:
            raise NotFoundError(f"no active ban for user {user_id}")

        revoked = await self._lift_ban(active, revoked_by, reason)

        MetricsExporter.record_user_action("unban")
        logger.info(f"User {user_id} unbanned by {revoked_by}")
        await self.log_activity(revoked_by, ActivityAction.USER_UNBANNED, {
            "target_user": user_id,
            "revoke_reason": reason,
        })
        return revoked

    async def apply_ban(self, payload: Dict[str, Any]) -> None:
        """Write the ban record, then the profile status and history. Safe to replay."""
        ban = BanRecord(**payload["ban"])
        await self.store.write(f"{self.BANS_PATH}/{ban.id}", ban.model_dump(mode="json"))
        await self._update_ban_history(ban, UserStatus.BANNED)

    async def apply_unban(self, payload: Dict[str, Any]) -> None:
        """Write the revoked ban, then restore the profile. Safe to replay."""
        ban = BanRecord(**payload["ban"])
        await self.store.write(f"{self.BANS_PATH}/{ban.id}", ban.model_dump(mode="json"))
        await self._update_ban_history(ban, UserStatus.ACTIVE)

    async def get_bans(self, user_id: Optional[str] = None) -> List[BanRecord]:
        bans = []
        for ban_id, data in (await self.store.read_children(self.BANS_PATH)).items():
            try:
                ban = BanRecord(**{**data, "id": ban_id})
            except ValueError as e:
                logger.warning(f"Skipping malformed ban {ban_id}: {e}")
                continue
            if user_id is None or ban.user_id == user_id:
                bans.append(ban)
        return sorted(bans, key=lambda b: b.start_ms)

    async def _find_active_ban(self, user_id: str) -> Optional[BanRecord]:
        for ban in await self.get_bans(user_id):
            if ban.is_active:
                return ban
        return None

    async def _lift_ban(self, ban: BanRecord, revoked_by: str, reason: str) -> BanRecord:
        revoked = ban.model_copy(update={
            "is_active": False,
            "revoked_by_user_id": revoked_by,
            "revoked_at_ms": self.clock(),
            "revoke_reason": reason,
        })
        await self.intent_log.run(
            UNBAN_OP,
            {"user_id": ban.user_id, "ban": revoked.model_dump(mode="json")},
            self.apply_unban,
        )
        return revoked

    async def _update_ban_history(self, ban: BanRecord, status: UserStatus) -> None:
        profile = await self.get_user_profile(ban.user_id)
        if profile is None:
            logger.warning(f"Ban {ban.id} references missing user {ban.user_id}")
            return
        history = [b for b in profile.ban_history if b.id != ban.id] + [ban]
        history.sort(key=lambda b: b.start_ms)
        await self.store.write(self._user_path(ban.user_id), {
            "status": status.value,
            "ban_history": [b.model_dump(mode="json") for b in history],
        }, merge=True)

    # Suspensions and warnings

    async def suspend_user(self, user_id: str, suspended_by: str, reason: str, hours: float) -> UserProfile:
        if not hours or hours <= 0:
            raise InvalidArgument("suspension requires a positive number of hours")
        profile = await self._require_profile(user_id)
        until = self.clock() + int(hours * MS_PER_HOUR)

        await self.store.write(self._user_path(user_id), {
            "status": UserStatus.SUSPENDED.value,
            "suspended_until_ms": until,
            "suspension_reason": reason,
        }, merge=True)

        MetricsExporter.record_user_action("suspend")
        await self.log_activity(suspended_by, ActivityAction.USER_SUSPENDED, {
            "target_user": user_id,
            "reason": reason,
            "hours": hours,
        })
        return profile.model_copy(update={
            "status": UserStatus.SUSPENDED,
            "suspended_until_ms": until,
            "suspension_reason": reason,
        })

    async def warn_user(self, user_id: str, warned_by: str, reason: str) -> UserProfile:
        profile = await self._require_profile(user_id)
        warning = WarningRecord(reason=reason, issued_by_user_id=warned_by, issued_at_ms=self.clock())

        await self.store.write(self._user_path(user_id), {
            "warning_count": profile.warning_count + 1,
            "last_warning": warning.model_dump(mode="json"),
        }, merge=True)

        MetricsExporter.record_user_action("warn")
        await self.log_activity(warned_by, ActivityAction.USER_WARNED, {
            "target_user": user_id,
            "reason": reason,
        })
        return profile.model_copy(update={
            "warning_count": profile.warning_count + 1,
            "last_warning": warning,
        })

    # Best-effort secondary effects

    async def log_activity(
        self,
        user_id: str,
        action: ActivityAction,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        activity = UserActivity(user_id=user_id, action=action, timestamp_ms=self.clock(), details=details)
        try:
            return await self.store.append(self.ACTIVITY_PATH, activity.model_dump(mode="json"))
        except StoreError as e:
            logger.warning(f"Failed to log {action} activity for {user_id}: {e}")
            MetricsExporter.record_secondary_failure("activity_log")
            return None

    async def increment_message_count(self, user_id: str) -> None:
        try:
            profile = await self.get_user_profile(user_id)
            if profile is None:
                logger.debug(f"No profile for {user_id}, message count not updated")
                return
            await self.store.write(self._user_path(user_id), {
                "message_count": profile.message_count + 1,
                "last_active_ms": self.clock(),
            }, merge=True)
        except StoreError as e:
            logger.warning(f"Failed to update message count for {user_id}: {e}")
            MetricsExporter.record_secondary_failure("message_count")

    async def increment_flag_count(self, user_id: str) -> None:
        try:
            profile = await self.get_user_profile(user_id)
            if profile is None:
                logger.debug(f"No profile for {user_id}, flag count not updated")
                return
            await self.store.write(self._user_path(user_id), {
                "flag_count": profile.flag_count + 1,
            }, merge=True)
        except StoreError as e:
            logger.warning(f"Failed to update flag count for {user_id}: {e}")
            MetricsExporter.record_secondary_failure("flag_count")

    # Permission checks

    async def can_user_perform_action(self, user_id: str, action: str) -> bool:
        """
        Permission check for an active user.
        Expired suspensions and expired temporary bans are lifted on the way.
        """
        if action not in PermissionSet.model_fields:
            raise InvalidArgument(f"Unknown permission: {action}")

        profile = await self.get_user_profile(user_id)
        if profile is None:
            return False

        now = self.clock()
        status = profile.status

        if status == UserStatus.SUSPENDED:
            if profile.suspended_until_ms is None or now <= profile.suspended_until_ms:
                return False
            await self.store.write(self._user_path(user_id), {
                "status": UserStatus.ACTIVE.value,
                "suspended_until_ms": None,
                "suspension_reason": None,
            }, merge=True)
            logger.info(f"Suspension of {user_id} expired")
            status = UserStatus.ACTIVE

        elif status == UserStatus.BANNED:
            active = await self._find_active_ban(user_id)
            if active is not None and not active.is_expired(now):
                return False
            if active is not None:
                await self._lift_ban(active, SYSTEM_USER, "ban expired")
            else:
                await self.store.write(self._user_path(user_id), {"status": UserStatus.ACTIVE.value}, merge=True)
            logger.info(f"Ban of {user_id} expired")
            status = UserStatus.ACTIVE

        if status != UserStatus.ACTIVE:
            return False
        return getattr(permissions_for_role(profile.role), action)

    # Statistics

    async def get_user_stats(self) -> UserStats:
        users = list(parse_users(await self.store.read_children(USERS_PATH)).values())
        now = self.clock()
        one_hour_ago = now - MS_PER_HOUR
        one_day_ago = now - MS_PER_DAY

        most_active = sorted(
            (u for u in users if u.message_count > 0),
            key=lambda u: u.message_count,
            reverse=True,
        )[:self.MOST_ACTIVE_USERS]

        activities = []
        for key, data in (await self.store.read_children(self.ACTIVITY_PATH)).items():
            try:
                activities.append(UserActivity(**data))
            except ValueError as e:
                logger.warning(f"Skipping malformed activity {key}: {e}")
        activities.sort(key=lambda a: a.timestamp_ms, reverse=True)

        return UserStats(
            total_users=len(users),
            active_users=sum(1 for u in users if u.last_active_ms > one_hour_ago),
            banned_users=sum(1 for u in users if u.status == UserStatus.BANNED),
            suspended_users=sum(1 for u in users if u.status == UserStatus.SUSPENDED),
            new_users_today=sum(1 for u in users if u.created_at_ms > one_day_ago),
            most_active_users=[
                ActiveUserCount(uid=u.uid, email=u.email, message_count=u.message_count)
                for u in most_active
            ],
            recent_activity=activities[:self.RECENT_ACTIVITY],
        )

    # Pure filters

    @staticmethod
    def get_users_by_status(users: Iterable[UserProfile], status: UserStatus) -> List[UserProfile]:
        return [u for u in users if u.status == UserStatus(status)]

    @staticmethod
    def get_users_by_role(users: Iterable[UserProfile], role: UserRole) -> List[UserProfile]:
        return [u for u in users if u.role == UserRole(role)]

    @staticmethod
    def search_users(users: Iterable[UserProfile], query: str) -> List[UserProfile]:
        q = query.lower()
        return [
            u for u in users
            if q in u.email.lower() or (u.display_name and q in u.display_name.lower())
        ]

    def is_admin_email(self, email: str) -> bool:
        return email.lower() in self.admin_emails

    async def _require_profile(self, uid: str) -> UserProfile:
        profile = await self.get_user_profile(uid)
        if profile is None:
            raise NotFoundError(f"No user profile {uid}")
        return profile

    @staticmethod
    def _user_path(uid: str) -> str:
        return f"{USERS_PATH}/{uid}"
