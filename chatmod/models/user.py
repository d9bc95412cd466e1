"""
User and ban data models.
Profiles carry role, status and moderation counters; permissions are derived from role.
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, model_validator

from chatmod.models.enums import UserRole, UserStatus, BanType, ActivityAction


class PermissionSet(BaseModel):
    """What a user may do. Always derived from the role."""
    can_send_messages: bool = True
    can_delete_own_messages: bool = True
    can_report_messages: bool = True
    can_access_admin_panel: bool = False
    can_moderate_messages: bool = False
    can_ban_users: bool = False
    can_manage_roles: bool = False


_ROLE_PERMISSIONS: Dict[UserRole, Dict[str, bool]] = {
    UserRole.USER: {},
    UserRole.MODERATOR: {
        "can_access_admin_panel": True,
        "can_moderate_messages": True,
    },
    UserRole.ADMIN: {
        "can_access_admin_panel": True,
        "can_moderate_messages": True,
        "can_ban_users": True,
        "can_manage_roles": True,
    },
}


def permissions_for_role(role: UserRole) -> PermissionSet:
    """Permission set for a role. Stored copies are for audit/display only."""
    return PermissionSet(**_ROLE_PERMISSIONS[UserRole(role)])


class BanRecord(BaseModel):
    """A ban against a user. At most one is active per user."""
    id: str
    user_id: str
    banned_by_user_id: str
    reason: str
    type: BanType
    start_ms: int
    end_ms: Optional[int] = None  # None for permanent bans
    is_active: bool = True

    # Revocation
    revoked_by_user_id: Optional[str] = None
    revoked_at_ms: Optional[int] = None
    revoke_reason: Optional[str] = None

    @model_validator(mode="after")
    def _check_end(self) -> "BanRecord":
        if (self.end_ms is None) != (self.type == BanType.PERMANENT):
            raise ValueError("end_ms must be set exactly for temporary bans")
        return self

    def is_expired(self, now_ms: int) -> bool:
        return self.end_ms is not None and now_ms >= self.end_ms


class WarningRecord(BaseModel):
    reason: str
    issued_by_user_id: str
    issued_at_ms: int


class UserProfile(BaseModel):
    """
    User entity with moderation-relevant data.
    Created on first sign-in, updated by moderation actions and message sends.
    """
    uid: str
    email: str
    display_name: Optional[str] = None

    # Account state
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE
    permissions: PermissionSet = Field(default_factory=PermissionSet)

    # Timestamps
    created_at_ms: int = 0
    last_active_ms: int = 0

    # Counters
    message_count: int = Field(ge=0, default=0)
    flag_count: int = Field(ge=0, default=0)
    warning_count: int = Field(ge=0, default=0)

    # Moderation history
    ban_history: List[BanRecord] = Field(default_factory=list)
    suspended_until_ms: Optional[int] = None
    suspension_reason: Optional[str] = None
    last_warning: Optional[WarningRecord] = None


class UserActivity(BaseModel):
    """Entry in the append-only activity log."""
    user_id: str
    action: ActivityAction
    timestamp_ms: int
    details: Optional[Dict[str, Any]] = None


class ActiveUserCount(BaseModel):
    uid: str
    email: str
    message_count: int


class UserStats(BaseModel):
    """Admin panel summary of the user base."""
    total_users: int = 0
    active_users: int = 0          # Active in the last hour
    banned_users: int = 0
    suspended_users: int = 0
    new_users_today: int = 0
    most_active_users: List[ActiveUserCount] = Field(default_factory=list)
    recent_activity: List[UserActivity] = Field(default_factory=list)
