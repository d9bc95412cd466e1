"""
Enumeration definitions for the chat moderation pipeline.
Covers classifier verdicts, flag workflow state, user roles and report types.
"""

from enum import Enum


class Verdict(str, Enum):
    """Outcome of classifying a single message."""
    ALLOW = "allow"
    FLAG = "flag"                 # Stored, queued for human review
    AUTO_DELETE = "autoDelete"    # Never delivered / removed immediately


class FlagReason(str, Enum):
    """Why a message was flagged."""
    PROFANITY = "profanity"
    SPAM = "spam"
    HARASSMENT = "harassment"
    INAPPROPRIATE = "inappropriate"
    MANUAL = "manual"


class Severity(str, Enum):
    """
    Severity of a flag.
    Ordered: a higher rank means faster action required.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
}


class ReviewAction(str, Enum):
    """Resolution recorded when a moderator reviews a flag."""
    APPROVED = "approved"   # Flag was a false positive
    DELETED = "deleted"     # Flag confirmed, message removed
    EDITED = "edited"


class UserRole(str, Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    BANNED = "banned"
    SUSPENDED = "suspended"


class BanType(str, Enum):
    TEMPORARY = "temporary"
    PERMANENT = "permanent"


class ActivityAction(str, Enum):
    """Entries written to the user activity log."""
    LOGIN = "login"
    LOGOUT = "logout"
    MESSAGE_SENT = "message_sent"
    MESSAGE_DELETED = "message_deleted"
    USER_REPORTED = "user_reported"
    MESSAGE_FLAGGED = "message_flagged"
    ROLE_UPDATED = "role_updated"
    USER_BANNED = "user_banned"
    USER_UNBANNED = "user_unbanned"
    USER_SUSPENDED = "user_suspended"
    USER_WARNED = "user_warned"


class ReportType(str, Enum):
    """Analytics report windows."""
    DAILY = "daily"       # 1 day
    WEEKLY = "weekly"     # 7 days
    MONTHLY = "monthly"   # 30 days
    CUSTOM = "custom"     # Caller supplies start and end


class RuleType(str, Enum):
    """Kinds of stored moderation rules."""
    KEYWORD = "keyword"
    PATTERN = "pattern"
    LENGTH = "length"


class RuleAction(str, Enum):
    FLAG = "flag"
    AUTO_DELETE = "auto_delete"
