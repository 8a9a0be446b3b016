"""Pydantic models for API request/response serialization.

Response models read straight from the engine's dataclasses
(``from_attributes``), so they mirror the core types field for field.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from msgguard.messages.models import ThreadKind
from msgguard.moderation.models import FlagType, ReportStatus
from msgguard.orgs.models import ContactRequestStatus
from msgguard.policies.models import GuardMode


class _FromCore(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class OkResponse(BaseModel):
    ok: bool = True


# ---------------------------------------------------------------------------
# Threads and messages
# ---------------------------------------------------------------------------


class CreateThreadRequest(BaseModel):
    kind: ThreadKind
    student_id: Optional[str] = None
    coach_id: Optional[str] = None
    coach_user_id: Optional[str] = None
    group_id: Optional[str] = None


class ThreadResponse(_FromCore):
    """Mirrors msgguard.messages.models.MessageThread."""

    id: str
    kind: ThreadKind
    workspace_org_id: str
    participant_a_id: str
    participant_b_id: str
    student_id: Optional[str] = None
    group_id: Optional[str] = None
    last_message_id: Optional[int] = None
    last_message_at: Optional[str] = None
    frozen_at: Optional[str] = None
    frozen_reason: Optional[str] = None
    created_at: str


class CreateThreadResponse(BaseModel):
    thread_id: str
    created: bool


class InboxItemResponse(_FromCore):
    thread: ThreadResponse
    unread_count: int = 0


class InboxResponse(BaseModel):
    threads: list[InboxItemResponse] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    body: str = Field(min_length=1, max_length=2000)


class MessageResponse(_FromCore):
    """Mirrors msgguard.messages.models.Message."""

    id: int
    thread_id: str
    sender_user_id: str
    body: str
    created_at: str
    redacted_at: Optional[str] = None


class FlagResponse(_FromCore):
    type: FlagType
    matched_value: str


class SendMessageResponse(_FromCore):
    message: MessageResponse
    flags: list[FlagResponse] = Field(default_factory=list)


class MessagePageResponse(_FromCore):
    thread: ThreadResponse
    messages: list[MessageResponse] = Field(default_factory=list)
    has_more: bool = False


class MarkReadRequest(BaseModel):
    last_read_message_id: int = Field(gt=0)


class ThreadExportResponse(_FromCore):
    thread: ThreadResponse
    messages: list[MessageResponse] = Field(default_factory=list)


class MessageExportResponse(_FromCore):
    generated_at: str
    user_id: str
    workspace_org_id: str
    truncated: bool
    threads: list[ThreadExportResponse] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Coach contacts
# ---------------------------------------------------------------------------


class CoachContactRequestCreate(BaseModel):
    email: str = Field(min_length=3, max_length=320)


class CoachContactRespondRequest(BaseModel):
    request_id: str
    decision: Literal["accept", "reject"]


class CoachContactRequestResponse(_FromCore):
    id: str
    requester_user_id: str
    target_user_id: str
    status: ContactRequestStatus
    created_at: str
    responded_at: Optional[str] = None


class NotificationPreviewResponse(_FromCore):
    thread_id: str
    kind: ThreadKind
    from_user_id: str
    from_name: Optional[str] = None
    body_preview: str
    created_at: str


class ContactRequestNoticeResponse(_FromCore):
    id: str
    requester_user_id: str
    requester_name: Optional[str] = None
    requester_email: Optional[str] = None
    created_at: str


class NotificationsResponse(_FromCore):
    unread_messages_count: int
    unread_previews: list[NotificationPreviewResponse]
    pending_contact_requests_count: int
    pending_contact_requests: list[ContactRequestNoticeResponse]


# ---------------------------------------------------------------------------
# Policy and charter
# ---------------------------------------------------------------------------


class PolicyResponse(_FromCore):
    """Mirrors msgguard.policies.models.MessagingPolicy."""

    org_id: str
    guard_mode: GuardMode
    sensitive_words: list[str] = Field(default_factory=list)
    retention_days: int
    charter_version: int
    supervision_enabled: bool


class PolicyUpdateRequest(BaseModel):
    guard_mode: Optional[GuardMode] = None
    sensitive_words: Optional[list[str]] = None
    retention_days: Optional[int] = None
    charter_version: Optional[int] = None
    supervision_enabled: Optional[bool] = None


class CharterStatusResponse(_FromCore):
    charter_version: int
    must_accept: bool
    accepted_at: Optional[str] = None
    content: dict[str, str] = Field(default_factory=dict)


class AcceptCharterRequest(BaseModel):
    charter_version: int = Field(ge=1)


# ---------------------------------------------------------------------------
# Suspensions
# ---------------------------------------------------------------------------


class SuspensionResponse(_FromCore):
    id: str
    org_id: str
    user_id: str
    reason: str
    suspended_until: Optional[str] = None
    created_at: str
    created_by: Optional[str] = None


class SuspensionsResponse(BaseModel):
    suspensions: list[SuspensionResponse] = Field(default_factory=list)


class ManageSuspensionRequest(BaseModel):
    user_id: str
    action: Literal["suspend", "lift"] = "suspend"
    reason: str = ""
    suspended_until: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class CreateReportRequest(BaseModel):
    thread_id: str
    message_id: Optional[int] = Field(default=None, gt=0)
    reason: str = Field(min_length=3, max_length=200)
    details: Optional[str] = Field(default=None, max_length=1000)


class SnapshotItemResponse(_FromCore):
    id: int
    sender_user_id: str
    sender_name: Optional[str] = None
    sender_role: Optional[str] = None
    created_at: str
    body: str


class ReportResponse(_FromCore):
    """Mirrors msgguard.moderation.models.MessageReport."""

    id: str
    workspace_org_id: str
    thread_id: str
    message_id: Optional[int] = None
    reported_by: Optional[str] = None
    reason: str
    details: Optional[str] = None
    status: ReportStatus
    freeze_applied: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[str] = None
    frozen_at: Optional[str] = None
    frozen_reason: Optional[str] = None
    snapshot: list[SnapshotItemResponse] = Field(default_factory=list)
    created_at: str
    updated_at: str


class ReportEnvelope(BaseModel):
    report: ReportResponse


class ReportListResponse(_FromCore):
    reports: list[ReportResponse] = Field(default_factory=list)
    truncated: bool = False


class UpdateReportStatusRequest(BaseModel):
    status: ReportStatus
    freeze_thread: Optional[bool] = None
    resolution_note: Optional[str] = Field(default=None, max_length=1000)


class ThreadMemberResponse(BaseModel):
    user_id: str
    full_name: Optional[str] = None
    role: Optional[str] = None


class ReportDetailResponse(_FromCore):
    report: ReportResponse
    messages: list[MessageResponse] = Field(default_factory=list)
    truncated: bool = False
    members: list[ThreadMemberResponse] = Field(default_factory=list)


class FlagRecordResponse(BaseModel):
    message_id: int
    flag_type: FlagType
    matched_value: str
    guard_mode: GuardMode
    created_at: str


class PurgeResponse(BaseModel):
    ok: bool = True
    redacted_messages: int = 0
