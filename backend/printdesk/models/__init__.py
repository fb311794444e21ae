from printdesk.models.audit_log import AuditLog
from printdesk.models.commission import Commission
from printdesk.models.flow_trigger import FlowTrigger
from printdesk.models.job_lock import JobLock
from printdesk.models.order_link import OrderCancellation, OrderLink
from printdesk.models.preflight_job import PreflightJob
from printdesk.models.shop import ProductConfig, Shop
from printdesk.models.upload import Upload, UploadItem

__all__ = [
    "AuditLog",
    "Commission",
    "FlowTrigger",
    "JobLock",
    "OrderCancellation",
    "OrderLink",
    "PreflightJob",
    "ProductConfig",
    "Shop",
    "Upload",
    "UploadItem",
]
