from __future__ import annotations

from enum import StrEnum

from sqlalchemy import Enum

from printdesk.core.enums import (
    CommissionStatus,
    FlowEventType,
    FlowTriggerStatus,
    PreflightJobStatus,
    PreflightStatus,
    UploadMode,
    UploadProvenance,
    UploadStatus,
)


def _values(enum_cls: type[StrEnum]) -> list[str]:
    # Persist the lowercase wire values, not the member names.
    return [member.value for member in enum_cls]


upload_mode_enum = Enum(UploadMode, name="upload_mode", values_callable=_values)
upload_status_enum = Enum(UploadStatus, name="upload_status", values_callable=_values)
upload_provenance_enum = Enum(UploadProvenance, name="upload_provenance", values_callable=_values)

preflight_status_enum = Enum(PreflightStatus, name="preflight_status", values_callable=_values)
preflight_job_status_enum = Enum(PreflightJobStatus, name="preflight_job_status", values_callable=_values)

commission_status_enum = Enum(CommissionStatus, name="commission_status", values_callable=_values)

flow_trigger_status_enum = Enum(FlowTriggerStatus, name="flow_trigger_status", values_callable=_values)
flow_event_type_enum = Enum(FlowEventType, name="flow_event_type", values_callable=_values)
