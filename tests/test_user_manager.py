"""
Tests for user management: profiles, roles, bans, suspensions and permissions.
"""

import pytest

from chatmod.lib.errors import ConflictError, InvalidArgument, NotFoundError, StoreWriteError
from chatmod.lib.record_store import InMemoryRecordStore
from chatmod.lib.timeutils import MS_PER_HOUR
from chatmod.models.enums import ActivityAction, BanType, UserRole, UserStatus
from chatmod.services.reconciler import IntentLog
from chatmod.services.user_manager import UserManager


class FailingAppendStore(InMemoryRecordStore):
    """Accepts profile writes but fails every append."""

    async def append(self, prefix, value=None):
        raise StoreWriteError("append unavailable", path=prefix)


async def activity_actions(store):
    return [a["action"] for a in (await store.read_children("userActivity")).values()]


class TestProfiles:

    @pytest.mark.asyncio
    async def test_first_sign_in_creates_profile(self, user_manager, store, clock):
        profile = await user_manager.initialize_user("u1", "u1@example.com", "Una")

        assert profile.role == UserRole.USER
        assert profile.status == UserStatus.ACTIVE
        assert profile.created_at_ms == clock()
        assert profile.permissions.can_send_messages is True
        assert profile.permissions.can_ban_users is False
        assert await activity_actions(store) == [ActivityAction.LOGIN.value]

    @pytest.mark.asyncio
    async def test_admin_email_gets_admin_role(self, user_manager):
        profile = await user_manager.initialize_user("a1", "Admin@Example.com")
        assert profile.role == UserRole.ADMIN
        assert profile.permissions.can_manage_roles is True

    @pytest.mark.asyncio
    async def test_returning_user_refreshes_activity(self, user_manager, clock):
        await user_manager.initialize_user("u1", "u1@example.com", "Una")
        clock.advance(MS_PER_HOUR)

        profile = await user_manager.initialize_user("u1", "u1@example.com")
        assert profile.last_active_ms == clock()
        assert profile.display_name == "Una"
        assert profile.created_at_ms == clock() - MS_PER_HOUR

    @pytest.mark.asyncio
    async def test_role_update_rederives_permissions(self, user_manager):
        await user_manager.initialize_user("u1", "u1@example.com")
        updated = await user_manager.update_user_role("u1", UserRole.MODERATOR, "admin1")

        assert updated.permissions.can_moderate_messages is True
        stored = await user_manager.get_user_profile("u1")
        assert stored.role == UserRole.MODERATOR
        assert stored.permissions.can_moderate_messages is True
        assert stored.permissions.can_ban_users is False

    @pytest.mark.asyncio
    async def test_role_update_unknown_user(self, user_manager):
        with pytest.raises(NotFoundError):
            await user_manager.update_user_role("ghost", UserRole.ADMIN, "admin1")

    @pytest.mark.asyncio
    async def test_list_users_most_recent_first(self, user_manager, clock):
        await user_manager.initialize_user("u1", "u1@example.com")
        clock.advance(1000)
        await user_manager.initialize_user("u2", "u2@example.com")
        assert [u.uid for u in await user_manager.list_users()] == ["u2", "u1"]

    @pytest.mark.asyncio
    async def test_monitor_users_delivers_updates(self, user_manager, clock):
        snapshots = []
        unsubscribe = await user_manager.monitor_users(snapshots.append)
        await user_manager.initialize_user("u1", "u1@example.com")
        clock.advance(1000)
        await user_manager.initialize_user("u2", "u2@example.com")
        await user_manager.update_user_role("u1", UserRole.MODERATOR, "admin1")
        unsubscribe()
        await user_manager.initialize_user("u3", "u3@example.com")

        assert snapshots[0] == []
        assert [[u.uid for u in snapshot] for snapshot in snapshots[1:3]] == [["u1"], ["u2", "u1"]]
        assert len(snapshots) == 4
        assert {u.uid: u.role for u in snapshots[-1]}["u1"] == UserRole.MODERATOR


class TestBans:

    @pytest.mark.asyncio
    async def test_ban_then_unban(self, user_manager):
        await user_manager.initialize_user("u1", "u1@example.com")

        ban = await user_manager.ban_user("u1", "admin1", "abuse", BanType.PERMANENT)
        assert ban.end_ms is None
        assert (await user_manager.get_user_profile("u1")).status == UserStatus.BANNED

        revoked = await user_manager.unban_user("u1", "admin1", "appeal accepted")
        assert revoked.is_active is False
        assert revoked.revoke_reason == "appeal accepted"

        bans = await user_manager.get_bans("u1")
        assert len(bans) == 1
        assert bans[0].is_active is False
        profile = await user_manager.get_user_profile("u1")
        assert profile.status == UserStatus.ACTIVE
        assert len(profile.ban_history) == 1
        assert profile.ban_history[0].is_active is False
        assert await user_manager.intent_log.pending() == []

    @pytest.mark.asyncio
    async def test_second_unban_not_found(self, user_manager):
        await user_manager.initialize_user("u1", "u1@example.com")
        await user_manager.ban_user("u1", "admin1", "abuse", BanType.PERMANENT)
        await user_manager.unban_user("u1", "admin1", "ok")
        with pytest.raises(NotFoundError, match="no active ban"):
            await user_manager.unban_user("u1", "admin1", "again")

    @pytest.mark.asyncio
    async def test_temporary_ban_needs_duration(self, user_manager):
        await user_manager.initialize_user("u1", "u1@example.com")
        with pytest.raises(InvalidArgument):
            await user_manager.ban_user("u1", "admin1", "spam", BanType.TEMPORARY)
        with pytest.raises(InvalidArgument):
            await user_manager.ban_user("u1", "admin1", "spam", BanType.TEMPORARY, duration_hours=0)

    @pytest.mark.asyncio
    async def test_ban_unknown_user(self, user_manager):
        with pytest.raises(NotFoundError):
            await user_manager.ban_user("ghost", "admin1", "spam", BanType.PERMANENT)

    @pytest.mark.asyncio
    async def test_only_one_active_ban(self, user_manager):
        await user_manager.initialize_user("u1", "u1@example.com")
        await user_manager.ban_user("u1", "admin1", "spam", BanType.TEMPORARY, duration_hours=2)
        with pytest.raises(ConflictError):
            await user_manager.ban_user("u1", "admin1", "more spam", BanType.PERMANENT)

    @pytest.mark.asyncio
    async def test_expired_ban_replaced(self, user_manager, clock):
        await user_manager.initialize_user("u1", "u1@example.com")
        first = await user_manager.ban_user("u1", "admin1", "spam", BanType.TEMPORARY, duration_hours=1)
        assert first.end_ms == clock() + MS_PER_HOUR

        clock.advance(2 * MS_PER_HOUR)
        second = await user_manager.ban_user("u1", "admin1", "again", BanType.PERMANENT)

        bans = {b.id: b for b in await user_manager.get_bans("u1")}
        assert bans[first.id].is_active is False
        assert bans[first.id].revoked_by_user_id == "system"
        assert bans[second.id].is_active is True
        assert (await user_manager.get_user_profile("u1")).status == UserStatus.BANNED


class TestSuspensionsAndWarnings:

    @pytest.mark.asyncio
    async def test_suspend_requires_positive_hours(self, user_manager):
        await user_manager.initialize_user("u1", "u1@example.com")
        with pytest.raises(InvalidArgument):
            await user_manager.suspend_user("u1", "mod1", "cool off", 0)

    @pytest.mark.asyncio
    async def test_warn_increments_count(self, user_manager, store):
        await user_manager.initialize_user("u1", "u1@example.com")
        await user_manager.warn_user("u1", "mod1", "language")
        profile = await user_manager.warn_user("u1", "mod1", "language again")

        assert profile.warning_count == 2
        assert profile.last_warning.reason == "language again"
        assert (await user_manager.get_user_profile("u1")).warning_count == 2
        assert (await activity_actions(store)).count(ActivityAction.USER_WARNED.value) == 2


class TestPermissions:

    @pytest.mark.asyncio
    async def test_unknown_permission(self, user_manager):
        with pytest.raises(InvalidArgument):
            await user_manager.can_user_perform_action("u1", "can_fly")

    @pytest.mark.asyncio
    async def test_missing_user_denied(self, user_manager):
        assert await user_manager.can_user_perform_action("ghost", "can_send_messages") is False

    @pytest.mark.asyncio
    async def test_role_permissions(self, user_manager):
        await user_manager.initialize_user("u1", "u1@example.com")
        await user_manager.initialize_user("a1", "admin@example.com")
        assert await user_manager.can_user_perform_action("u1", "can_send_messages") is True
        assert await user_manager.can_user_perform_action("u1", "can_ban_users") is False
        assert await user_manager.can_user_perform_action("a1", "can_ban_users") is True

    @pytest.mark.asyncio
    async def test_suspension_lifted_after_expiry(self, user_manager, clock):
        await user_manager.initialize_user("u1", "u1@example.com")
        await user_manager.suspend_user("u1", "mod1", "cool off", 1)

        assert await user_manager.can_user_perform_action("u1", "can_send_messages") is False
        clock.advance(MS_PER_HOUR + 1)
        assert await user_manager.can_user_perform_action("u1", "can_send_messages") is True

        profile = await user_manager.get_user_profile("u1")
        assert profile.status == UserStatus.ACTIVE
        assert profile.suspended_until_ms is None

    @pytest.mark.asyncio
    async def test_temporary_ban_lifted_after_expiry(self, user_manager, clock):
        await user_manager.initialize_user("u1", "u1@example.com")
        await user_manager.ban_user("u1", "admin1", "spam", BanType.TEMPORARY, duration_hours=1)

        assert await user_manager.can_user_perform_action("u1", "can_send_messages") is False
        clock.advance(MS_PER_HOUR)
        assert await user_manager.can_user_perform_action("u1", "can_send_messages") is True

        assert (await user_manager.get_user_profile("u1")).status == UserStatus.ACTIVE
        assert all(not b.is_active for b in await user_manager.get_bans("u1"))

    @pytest.mark.asyncio
    async def test_permanent_ban_never_lifted(self, user_manager, clock):
        await user_manager.initialize_user("u1", "u1@example.com")
        await user_manager.ban_user("u1", "admin1", "abuse", BanType.PERMANENT)
        clock.advance(1000 * MS_PER_HOUR)
        assert await user_manager.can_user_perform_action("u1", "can_send_messages") is False


class TestCountersAndStats:

    @pytest.mark.asyncio
    async def test_counters(self, user_manager):
        await user_manager.initialize_user("u1", "u1@example.com")
        await user_manager.increment_message_count("u1")
        await user_manager.increment_message_count("u1")
        await user_manager.increment_flag_count("u1")
        await user_manager.increment_message_count("ghost")

        profile = await user_manager.get_user_profile("u1")
        assert profile.message_count == 2
        assert profile.flag_count == 1

    @pytest.mark.asyncio
    async def test_activity_log_failure_is_swallowed(self, clock):
        store = FailingAppendStore()
        manager = UserManager(store, IntentLog(store, clock=clock), clock=clock)
        await store.write("users/u1", {"email": "u1@example.com"})

        assert await manager.log_activity("u1", ActivityAction.LOGIN) is None

    @pytest.mark.asyncio
    async def test_user_stats(self, user_manager, clock):
        await user_manager.initialize_user("u1", "u1@example.com")
        await user_manager.initialize_user("u2", "u2@example.com")
        await user_manager.initialize_user("u3", "u3@example.com")
        await user_manager.increment_message_count("u2")
        await user_manager.ban_user("u3", "admin1", "abuse", BanType.PERMANENT)

        stats = await user_manager.get_user_stats()
        assert stats.total_users == 3
        assert stats.active_users == 3
        assert stats.banned_users == 1
        assert stats.new_users_today == 3
        assert [u.uid for u in stats.most_active_users] == ["u2"]
        assert stats.recent_activity[0].action in {ActivityAction.USER_BANNED, ActivityAction.LOGIN}

    @pytest.mark.asyncio
    async def test_filters(self, user_manager):
        await user_manager.initialize_user("u1", "sam@example.com", "Sam")
        await user_manager.initialize_user("a1", "admin@example.com", "Boss")
        users = await user_manager.list_users()

        assert [u.uid for u in UserManager.get_users_by_role(users, UserRole.ADMIN)] == ["a1"]
        assert [u.uid for u in UserManager.search_users(users, "SAM")] == ["u1"]
        assert len(UserManager.get_users_by_status(users, UserStatus.ACTIVE)) == 2
