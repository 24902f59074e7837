import json
import uuid
from datetime import datetime, timezone
from typing import Optional

from alarm_evaluator.models import STATUS_ACTIVE, AlarmEvent, ThresholdData, TriggerData


def now_utc():
    return datetime.now(timezone.utc)


class AlarmEventBuilder:
    """Builds alarm_events records for one (tenant, device) pair."""

    def __init__(self, tenant_id: str, device_id: str):
        self.tenant_id = tenant_id
        self.device_id = device_id

    def build(
        self,
        event_type: str,
        category: str,
        alarm_level: str,
        trigger_data: TriggerData,
        metadata: Optional[dict] = None,
    ) -> AlarmEvent:
        now = now_utc()
        return AlarmEvent(
            event_id=str(uuid.uuid4()),
            tenant_id=self.tenant_id,
            device_id=self.device_id,
            event_type=event_type,
            category=category,
            alarm_level=alarm_level,
            alarm_status=STATUS_ACTIVE,
            triggered_at=now,
            trigger_data=trigger_data.to_json(),
            notified_users="[]",
            metadata=json.dumps(metadata, default=str) if metadata is not None else "{}",
            created_at=now,
            updated_at=now,
        )


def build_trigger_data(
    event_type: str,
    source: str,
    heart_rate: Optional[int] = None,
    respiratory_rate: Optional[int] = None,
    posture: Optional[str] = None,
    posture_display: Optional[str] = None,
    snomed_code: Optional[str] = None,
    snomed_display: Optional[str] = None,
    confidence: Optional[int] = None,
    duration_sec: Optional[int] = None,
    threshold_duration_sec: Optional[int] = None,
) -> TriggerData:
    threshold = None
    if threshold_duration_sec is not None:
        threshold = ThresholdData(duration_sec=threshold_duration_sec)
    return TriggerData(
        event_type=event_type,
        source=source,
        heart_rate=heart_rate,
        respiratory_rate=respiratory_rate,
        posture=posture,
        posture_display=posture_display,
        snomed_code=snomed_code,
        snomed_display=snomed_display,
        confidence=confidence,
        duration_sec=duration_sec,
        threshold=threshold,
    )
