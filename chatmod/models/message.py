"""
Chat message and flag data models.
Pydantic models for the records kept under messages/ and flaggedMessages/.
"""

from typing import Dict, Optional, Union
from pydantic import BaseModel, Field, model_validator

from chatmod.models.enums import (
    FlagReason, Severity, ReviewAction, RuleType, RuleAction
)


class Message(BaseModel):
    """
    A chat message as stored in the record store.
    Immutable once created; only deletion changes it.
    """
    id: str
    text: str
    author_id: str
    author_display_name: str = "Anonymous"
    timestamp_ms: int = Field(ge=0)
    channel_id: Optional[str] = None

    # Set when the message went through the submit path
    validated: bool = False


class FlaggedMessage(BaseModel):
    """
    Review record derived from a message, keyed by the message id.
    Created when flagged, mutated exactly once by a review.
    """
    # Message reference
    id: str
    text: str
    author_id: str
    author_display_name: str = "Anonymous"
    timestamp_ms: int = 0
    channel_id: Optional[str] = None

    # Flag
    flag_reason: FlagReason
    severity: Severity
    auto_flagged: bool = True
    flagged_by_user_id: Optional[str] = None
    flagged_at_ms: int

    # Review
    reviewed: bool = False
    reviewed_by_user_id: Optional[str] = None
    reviewed_at_ms: Optional[int] = None
    resolution_action: Optional[ReviewAction] = None

    @model_validator(mode="after")
    def _check_review_state(self) -> "FlaggedMessage":
        if not self.reviewed and self.resolution_action is not None:
            raise ValueError("unreviewed flag cannot carry a resolution action")
        if not self.auto_flagged and not self.flagged_by_user_id:
            raise ValueError("manual flag requires flagged_by_user_id")
        return self

    @classmethod
    def from_message(
        cls,
        message: Message,
        flag_reason: FlagReason,
        severity: Severity,
        flagged_at_ms: int,
        flagged_by_user_id: Optional[str] = None,
        auto_flagged: bool = True,
    ) -> "FlaggedMessage":
        return cls(
            id=message.id,
            text=message.text,
            author_id=message.author_id,
            author_display_name=message.author_display_name,
            timestamp_ms=message.timestamp_ms,
            channel_id=message.channel_id,
            flag_reason=flag_reason,
            severity=severity,
            auto_flagged=auto_flagged,
            flagged_by_user_id=flagged_by_user_id,
            flagged_at_ms=flagged_at_ms,
        )


class ModerationRule(BaseModel):
    """Stored classifier rule. Disabling a rule skips its classifier stage."""
    id: str
    name: str
    type: RuleType
    value: Union[int, str]
    action: RuleAction
    severity: Severity
    enabled: bool = True


class FlagStats(BaseModel):
    """Review queue summary. Per-bucket counts cover unreviewed flags only."""
    total: int = 0
    reviewed: int = 0
    unreviewed: int = 0
    by_severity: Dict[Severity, int] = Field(default_factory=dict)
    by_reason: Dict[FlagReason, int] = Field(default_factory=dict)
    auto_flagged: int = 0
    manual_flagged: int = 0
