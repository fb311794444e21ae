from __future__ import annotations

from enum import StrEnum


class UploadMode(StrEnum):
    DTF_ONLY = "dtf_only"
    TSHIRT_INCLUDED = "tshirt_included"
    QUICK = "quick"
    CLASSIC = "classic"
    BUILDER = "builder"


class UploadStatus(StrEnum):
    DRAFT = "draft"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    NEEDS_REVIEW = "needs_review"
    PENDING_APPROVAL = "pending_approval"
    BLOCKED = "blocked"
    APPROVED = "approved"
    REJECTED = "rejected"
    PRINTED = "printed"
    SHIPPED = "shipped"
    ARCHIVED = "archived"


class UploadProvenance(StrEnum):
    REAL = "real"
    SYNTHESIZED = "synthesized"


class PreflightStatus(StrEnum):
    PENDING = "pending"
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


class PreflightJobStatus(StrEnum):
    QUEUED = "queued"
    CLAIMED = "claimed"
    DONE = "done"


class CommissionStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    VOIDED = "voided"


class FlowTriggerStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class FlowEventType(StrEnum):
    UPLOAD_RECEIVED = "upload_received"
    UPLOAD_APPROVED = "upload_approved"
    UPLOAD_REJECTED = "upload_rejected"
    PREFLIGHT_WARNING = "preflight_warning"
    PREFLIGHT_ERROR = "preflight_error"
    EXPORT_COMPLETED = "export_completed"
