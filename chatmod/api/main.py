"""FastAPI backend for the admin panel and chat clients.

Endpoints:
- POST /messages, POST /messages/{id}/flag, DELETE /messages/{id}
- GET /messages/search, GET /messages/export, GET /users/{uid}/messages
- GET /flagged, GET /flagged/stats, POST /flagged/{id}/review
- PUT /users/{uid}/role, POST /users/{uid}/ban|unban|suspend|warn, GET /users/stats
- GET /analytics/chat, GET /analytics/users/{uid}, GET /analytics/live, GET /analytics/recent
- POST /reports, GET /reports, DELETE /reports/expired

Callers are assumed to be authorized; actor ids travel in the request body.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from chatmod.lib.errors import (
    ConflictError, DeadlineExceeded, InvalidArgument, NotFoundError,
    RateLimitExceeded, StoreError, ValidationError,
)
from chatmod.models.analytics import (
    AnalyticsReport, ChatAnalytics, ChatHistoryExport, LiveChatStats, RecentChatStats, UserBehaviorMetrics,
)
from chatmod.models.enums import BanType, FlagReason, ReportType, ReviewAction, Severity, UserRole
from chatmod.models.message import FlaggedMessage, FlagStats, Message
from chatmod.models.user import BanRecord, UserProfile, UserStats
from chatmod.run_pipeline import Pipeline

logger = logging.getLogger(__name__)


class SubmitMessageRequest(BaseModel):
    author_id: str
    author_display_name: str = "Anonymous"
    text: str
    channel_id: Optional[str] = None


class FlagMessageRequest(BaseModel):
    flagged_by: str
    reason: FlagReason = FlagReason.MANUAL
    severity: Severity = Severity.MEDIUM


class ReviewRequest(BaseModel):
    reviewer_id: str
    action: ReviewAction


class RoleRequest(BaseModel):
    role: UserRole
    updated_by: str


class BanRequest(BaseModel):
    banned_by: str
    reason: str
    type: BanType
    duration_hours: Optional[float] = None


class UnbanRequest(BaseModel):
    revoked_by: str
    reason: str


class SuspendRequest(BaseModel):
    suspended_by: str
    reason: str
    hours: float = Field(gt=0)


class WarnRequest(BaseModel):
    warned_by: str
    reason: str


class ReportRequest(BaseModel):
    type: ReportType
    start_ms: Optional[int] = None
    end_ms: Optional[int] = None
    requested_by: str = "system"


_ERROR_STATUS = [
    # Most specific first
    (RateLimitExceeded, 429),
    (ValidationError, 422),
    (StoreError, 503),
    (NotFoundError, 404),
    (InvalidArgument, 400),
    (ConflictError, 409),
    (DeadlineExceeded, 504),
]


def _register_error_handlers(app: FastAPI) -> None:
    def make_handler(status_code: int):
        async def handler(request: Request, exc: Exception) -> JSONResponse:
            if status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc}")
            body: Dict[str, Any] = {"error": type(exc).__name__, "detail": str(exc)}
            headers = None
            if isinstance(exc, RateLimitExceeded):
                body["retry_after_seconds"] = exc.retry_after_seconds
                headers = {"Retry-After": str(exc.retry_after_seconds)}
            return JSONResponse(status_code=status_code, content=body, headers=headers)
        return handler

    for exc_class, status_code in _ERROR_STATUS:
        app.add_exception_handler(exc_class, make_handler(status_code))


def create_app(pipeline: Optional[Pipeline] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        p = pipeline or Pipeline()
        app.state.pipeline = p
        await p.start()
        yield
        await p.stop()

    app = FastAPI(title="Chat Moderation API", version="0.1.0", lifespan=lifespan)
    _register_error_handlers(app)

    def get_pipeline(request: Request) -> Pipeline:
        return request.app.state.pipeline

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    # Messages

    @app.post("/messages")
    async def submit_message(body: SubmitMessageRequest, request: Request) -> Dict[str, Any]:
        result = await get_pipeline(request).moderation_service.submit_message(
            body.author_id, body.author_display_name, body.text, body.channel_id
        )
        return {
            "accepted": result.accepted,
            "verdict": result.classification.verdict.value,
            "reason": result.classification.reason.value if result.classification.reason else None,
            "severity": result.classification.severity.value if result.classification.severity else None,
            "message": result.message.model_dump(mode="json") if result.message else None,
            "flagged": result.flag is not None,
            "flag_error": result.flag_error,
        }

    @app.post("/messages/{message_id}/flag")
    async def flag_message(message_id: str, body: FlagMessageRequest, request: Request) -> FlaggedMessage:
        return await get_pipeline(request).moderation_service.flag_manually(
            message_id, body.flagged_by, body.reason, body.severity
        )

    @app.delete("/messages/{message_id}")
    async def delete_message(message_id: str, request: Request, deleted_by: str = Query(...)) -> Dict[str, str]:
        await get_pipeline(request).moderation_service.delete_message(message_id, deleted_by)
        return {"status": "deleted", "message_id": message_id}

    @app.get("/messages/search")
    async def search_messages(request: Request, keyword: List[str] = Query(...)) -> List[Message]:
        return await get_pipeline(request).chat_admin.search_messages(keyword)

    @app.get("/messages/export")
    async def export_chat_history(request: Request) -> ChatHistoryExport:
        return await get_pipeline(request).chat_admin.export_chat_history()

    @app.get("/users/{uid}/messages")
    async def user_messages(uid: str, request: Request) -> List[Message]:
        return await get_pipeline(request).chat_admin.get_messages_by_user(uid)

    # Flag review

    @app.get("/flagged")
    async def list_flagged(
        request: Request,
        reviewed: Optional[bool] = None,
        severity: Optional[Severity] = None,
        reason: Optional[FlagReason] = None,
        limit: int = Query(default=100, ge=1, le=500),
    ) -> List[FlaggedMessage]:
        flagged = await get_pipeline(request).flag_store.list_flagged(reviewed, severity, reason)
        return flagged[:limit]

    @app.get("/flagged/stats")
    async def flagged_stats(request: Request) -> FlagStats:
        flag_store = get_pipeline(request).flag_store
        return flag_store.stats(await flag_store.list_flagged())

    @app.post("/flagged/{message_id}/review")
    async def review_flag(message_id: str, body: ReviewRequest, request: Request) -> FlaggedMessage:
        return await get_pipeline(request).flag_store.review_flagged_message(
            message_id, body.reviewer_id, body.action
        )

    # Users

    @app.get("/users/stats")
    async def user_stats(request: Request) -> UserStats:
        return await get_pipeline(request).user_manager.get_user_stats()

    @app.put("/users/{uid}/role")
    async def update_role(uid: str, body: RoleRequest, request: Request) -> UserProfile:
        return await get_pipeline(request).user_manager.update_user_role(uid, body.role, body.updated_by)

    @app.post("/users/{uid}/ban")
    async def ban_user(uid: str, body: BanRequest, request: Request) -> BanRecord:
        return await get_pipeline(request).user_manager.ban_user(
            uid, body.banned_by, body.reason, body.type, body.duration_hours
        )

    @app.post("/users/{uid}/unban")
    async def unban_user(uid: str, body: UnbanRequest, request: Request) -> BanRecord:
        return await get_pipeline(request).user_manager.unban_user(uid, body.revoked_by, body.reason)

    @app.post("/users/{uid}/suspend")
    async def suspend_user(uid: str, body: SuspendRequest, request: Request) -> UserProfile:
        return await get_pipeline(request).user_manager.suspend_user(
            uid, body.suspended_by, body.reason, body.hours
        )

    @app.post("/users/{uid}/warn")
    async def warn_user(uid: str, body: WarnRequest, request: Request) -> UserProfile:
        return await get_pipeline(request).user_manager.warn_user(uid, body.warned_by, body.reason)

    # Analytics

    @app.get("/analytics/chat")
    async def chat_analytics(request: Request, days: int = Query(default=30, ge=1, le=365)) -> ChatAnalytics:
        return await get_pipeline(request).chat_analytics.aggregate(days)

    @app.get("/analytics/users/{uid}")
    async def user_behavior(
        uid: str, request: Request, days: int = Query(default=30, ge=1, le=365)
    ) -> UserBehaviorMetrics:
        return await get_pipeline(request).behavior_analyzer.analyze(uid, days)

    @app.get("/analytics/live")
    async def live_stats(request: Request) -> LiveChatStats:
        return await get_pipeline(request).chat_admin.get_live_stats()

    @app.get("/analytics/recent")
    async def recent_stats(
        request: Request, sample_size: int = Query(default=100, ge=1, le=1000)
    ) -> RecentChatStats:
        return await get_pipeline(request).chat_admin.get_chat_stats(sample_size)

    # Reports

    @app.post("/reports")
    async def generate_report(body: ReportRequest, request: Request) -> AnalyticsReport:
        p = get_pipeline(request)
        return await p.report_generator.generate_report(
            body.type,
            body.start_ms,
            body.end_ms,
            body.requested_by,
            timeout_seconds=p.config.aggregation_timeout_seconds,
        )

    @app.get("/reports")
    async def list_reports(request: Request, limit: int = Query(default=10, ge=1, le=100)) -> List[AnalyticsReport]:
        return await get_pipeline(request).report_generator.get_reports(limit)

    @app.delete("/reports/expired")
    async def cleanup_reports(request: Request, days_to_keep: Optional[int] = Query(default=None, ge=1)) -> Dict[str, int]:
        p = get_pipeline(request)
        deleted = await p.report_generator.cleanup_old_reports(days_to_keep or p.config.report_retention_days)
        return {"deleted": deleted}

    return app


app = create_app()
