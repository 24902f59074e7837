"""
Data model for the alarm evaluator.

Reading/Posture mirror the JSON the sensor-fusion process writes into the
cache. AlarmEvent/TriggerData mirror the alarm_events table.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

# Entity kinds
KIND_ACTIVE_BED = "ActiveBed"
KIND_LOCATION = "Location"
KIND_UNKNOWN = "Unknown"

# Sensing modalities
SOURCE_SLEEPACE = "Sleepace"
SOURCE_RADAR = "Radar"

# Alarm categories
CATEGORY_SAFETY = "safety"
CATEGORY_CLINICAL = "clinical"
CATEGORY_BEHAVIORAL = "behavioral"
CATEGORY_DEVICE = "device"

# Alarm levels, most to least severe
LEVEL_EMERGENCY = "EMERGENCY"
LEVEL_ALERT = "ALERT"
LEVEL_CRITICAL = "CRIT"
LEVEL_ERROR = "ERROR"
LEVEL_WARNING = "WARNING"
LEVEL_NOTICE = "NOTICE"
LEVEL_INFORMATIONAL = "INFORMATIONAL"

STATUS_ACTIVE = "active"
STATUS_ACKNOWLEDGED = "acknowledged"

BED_OCCUPIED = frozenset({"on_bed", "ENTER_BED"})
BED_UNOCCUPIED = frozenset({"off_bed", "LEFT_BED"})

# Posture classes
POSTURE_WALKING = "walking"
POSTURE_STANDING = "standing"
POSTURE_SITTING = "sitting"
POSTURE_LYING = "lying"
POSTURE_FALL = "fall"
POSTURE_UNKNOWN = "unknown"

_POSTURE_CODES = {
    "walk": POSTURE_WALKING,
    "walking": POSTURE_WALKING,
    "129006008": POSTURE_WALKING,
    "stand": POSTURE_STANDING,
    "standing": POSTURE_STANDING,
    "10904000": POSTURE_STANDING,
    "sit": POSTURE_SITTING,
    "sitting": POSTURE_SITTING,
    "33586001": POSTURE_SITTING,
    "lying": POSTURE_LYING,
    "lie": POSTURE_LYING,
    "102538003": POSTURE_LYING,
    "fall": POSTURE_FALL,
    "suspected-fall": POSTURE_FALL,
}


def _opt_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _opt_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def normalize_timestamp(value: Any) -> Optional[float]:
    """Unix seconds; millisecond timestamps are scaled down."""
    ts = _opt_float(value)
    if ts is None or ts <= 0:
        return None
    if ts > 1e11:
        ts /= 1000.0
    return ts


@dataclass
class Posture:
    tracking_id: str
    posture_code: str = ""
    posture_display: str = ""
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Posture":
        return cls(
            tracking_id=str(data.get("tracking_id") or ""),
            posture_code=str(data.get("posture_code") or ""),
            posture_display=str(data.get("posture_display") or ""),
            x=_opt_float(data.get("x")),
            y=_opt_float(data.get("y")),
            z=_opt_float(data.get("z")),
        )

    @property
    def position(self) -> Optional[tuple[float, float]]:
        if self.x is None or self.y is None:
            return None
        return (self.x, self.y)

    @property
    def kind(self) -> str:
        return classify_posture(self.posture_code, self.posture_display)


def classify_posture(code: str, display: str = "") -> str:
    for candidate in (code, display):
        key = (candidate or "").strip().lower()
        if key in _POSTURE_CODES:
            return _POSTURE_CODES[key]
    label = (display or "").lower()
    for word, kind in (("walk", POSTURE_WALKING), ("stand", POSTURE_STANDING), ("sit", POSTURE_SITTING),
                       ("lying", POSTURE_LYING), ("fall", POSTURE_FALL)):
        if word in label:
            return kind
    return POSTURE_UNKNOWN


def distance_cm(a: Optional[tuple[float, float]], b: Optional[tuple[float, float]]) -> Optional[float]:
    if a is None or b is None:
        return None
    return math.hypot(a[0] - b[0], a[1] - b[1])


@dataclass
class Reading:
    """Latest fused snapshot for one entity."""
    heart: Optional[int] = None
    breath: Optional[int] = None
    heart_source: str = ""
    breath_source: str = ""
    heart_timestamp: Optional[float] = None
    breath_timestamp: Optional[float] = None
    sleep_stage: Optional[str] = None
    sleep_stage_source: str = ""
    sleep_stage_timestamp: Optional[float] = None
    bed_status: Optional[str] = None
    bed_status_source: str = ""
    bed_status_timestamp: Optional[float] = None
    person_count: int = 0
    postures: list[Posture] = field(default_factory=list)
    timestamp: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Reading":
        if not isinstance(data, dict):
            raise ValueError("realtime reading must be a JSON object")
        postures = [Posture.from_dict(p) for p in (data.get("postures") or []) if isinstance(p, dict)]
        return cls(
            heart=_opt_int(data.get("heart")),
            breath=_opt_int(data.get("breath")),
            heart_source=str(data.get("heart_source") or ""),
            breath_source=str(data.get("breath_source") or ""),
            heart_timestamp=normalize_timestamp(data.get("heart_timestamp")),
            breath_timestamp=normalize_timestamp(data.get("breath_timestamp")),
            sleep_stage=_opt_str(data.get("sleep_stage")),
            sleep_stage_source=str(data.get("sleep_stage_source") or ""),
            sleep_stage_timestamp=normalize_timestamp(data.get("sleep_stage_timestamp")),
            bed_status=_opt_str(data.get("bed_status")),
            bed_status_source=str(data.get("bed_status_source") or ""),
            bed_status_timestamp=normalize_timestamp(data.get("bed_status_timestamp")),
            person_count=max(0, _opt_int(data.get("person_count")) or 0),
            postures=postures,
            timestamp=normalize_timestamp(data.get("timestamp")),
        )

    @property
    def has_vitals(self) -> bool:
        return self.heart is not None or self.breath is not None

    @property
    def vitals_source(self) -> str:
        return self.heart_source or self.breath_source or SOURCE_SLEEPACE

    @property
    def bed_occupied(self) -> bool:
        return self.bed_status in BED_OCCUPIED

    @property
    def bed_unoccupied(self) -> bool:
        return self.bed_status in BED_UNOCCUPIED

    @property
    def presence_detected(self) -> bool:
        return self.person_count > 0 or bool(self.postures)

    def posture_for(self, tracking_id: Optional[str]) -> Optional[Posture]:
        if not tracking_id:
            return None
        for posture in self.postures:
            if posture.tracking_id == tracking_id:
                return posture
        return None


@dataclass
class DeviceBinding:
    device_id: str
    device_type: str = ""
    device_name: str = ""
    device_model: str = ""
    bed_id: Optional[str] = None
    bed_name: Optional[str] = None
    room_id: Optional[str] = None
    room_name: Optional[str] = None
    unit_id: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceBinding":
        return cls(
            device_id=str(data.get("device_id") or ""),
            device_type=str(data.get("device_type") or ""),
            device_name=str(data.get("device_name") or ""),
            device_model=str(data.get("device_model") or ""),
            bed_id=_opt_str(data.get("bed_id")),
            bed_name=_opt_str(data.get("bed_name")),
            room_id=_opt_str(data.get("room_id")),
            room_name=_opt_str(data.get("room_name")),
            unit_id=str(data.get("unit_id") or ""),
        )


@dataclass
class Entity:
    """A monitored card: either a bed (ActiveBed) or an area (Location)."""
    entity_id: str
    tenant_id: str
    kind: str = KIND_UNKNOWN
    bed_id: Optional[str] = None
    unit_id: str = ""
    name: str = ""
    room_id: Optional[str] = None
    devices: list[DeviceBinding] = field(default_factory=list)

    @property
    def is_bed(self) -> bool:
        return self.kind == KIND_ACTIVE_BED

    @property
    def is_area(self) -> bool:
        return self.kind == KIND_LOCATION

    def devices_of_type(self, device_type: str) -> list[DeviceBinding]:
        wanted = device_type.lower()
        return [d for d in self.devices if d.device_type.lower() == wanted]


@dataclass
class ThresholdData:
    min: Optional[int] = None
    max: Optional[int] = None
    duration_sec: Optional[int] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in (("min", self.min), ("max", self.max), ("duration_sec", self.duration_sec))
                if v is not None}

    @classmethod
    def from_dict(cls, data: dict) -> "ThresholdData":
        return cls(min=data.get("min"), max=data.get("max"), duration_sec=data.get("duration_sec"))


_TRIGGER_OPTIONAL = (
    "heart_rate",
    "respiratory_rate",
    "posture",
    "posture_display",
    "confidence",
    "duration_sec",
    "snomed_code",
    "snomed_display",
)


@dataclass
class TriggerData:
    """Immutable snapshot of the data that triggered an alarm."""
    event_type: str
    source: str
    heart_rate: Optional[int] = None
    respiratory_rate: Optional[int] = None
    posture: Optional[str] = None
    posture_display: Optional[str] = None
    confidence: Optional[int] = None
    duration_sec: Optional[int] = None
    threshold: Optional[ThresholdData] = None
    snomed_code: Optional[str] = None
    snomed_display: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        for name in ("heart_rate", "respiratory_rate", "posture", "posture_display", "event_type",
                     "confidence", "duration_sec"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.threshold is not None:
            data["threshold"] = self.threshold.to_dict()
        if self.snomed_code is not None:
            data["snomed_code"] = self.snomed_code
        if self.snomed_display is not None:
            data["snomed_display"] = self.snomed_display
        data["source"] = self.source
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "TriggerData":
        threshold = data.get("threshold")
        return cls(
            event_type=data.get("event_type", ""),
            source=data.get("source", ""),
            threshold=ThresholdData.from_dict(threshold) if isinstance(threshold, dict) else None,
            **{name: data.get(name) for name in _TRIGGER_OPTIONAL},
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "TriggerData":
        return cls.from_dict(json.loads(raw))


@dataclass
class AlarmEvent:
    event_id: str
    tenant_id: str
    device_id: str
    event_type: str
    category: str
    alarm_level: str
    alarm_status: str
    triggered_at: datetime
    trigger_data: str
    notified_users: str
    metadata: str
    created_at: datetime
    updated_at: datetime
    hand_time: Optional[datetime] = None
    iot_timeseries_id: Optional[int] = None
    handler: Optional[str] = None
    operation: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.alarm_status == STATUS_ACTIVE

    def trigger(self) -> TriggerData:
        return TriggerData.from_json(self.trigger_data)

    def to_dict(self) -> dict:
        """JSON-ready form used by the active-alarm cache mirror."""
        return {
            "event_id": self.event_id,
            "tenant_id": self.tenant_id,
            "device_id": self.device_id,
            "event_type": self.event_type,
            "category": self.category,
            "alarm_level": self.alarm_level,
            "alarm_status": self.alarm_status,
            "triggered_at": self.triggered_at.isoformat(),
            "hand_time": self.hand_time.isoformat() if self.hand_time else None,
            "iot_timeseries_id": self.iot_timeseries_id,
            "trigger_data": json.loads(self.trigger_data or "{}"),
            "handler": self.handler,
            "operation": self.operation,
            "notes": self.notes,
            "notified_users": json.loads(self.notified_users or "[]"),
            "metadata": json.loads(self.metadata or "{}"),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, row) -> "AlarmEvent":
        def _jsonb(value, empty: str) -> str:
            if value is None or value == "":
                return empty
            if isinstance(value, (dict, list)):
                return json.dumps(value)
            if isinstance(value, bytes):
                return value.decode()
            return str(value)

        return cls(
            event_id=str(row["event_id"]),
            tenant_id=row["tenant_id"],
            device_id=row["device_id"],
            event_type=row["event_type"],
            category=row["category"],
            alarm_level=row["alarm_level"],
            alarm_status=row["alarm_status"],
            triggered_at=row["triggered_at"],
            hand_time=row["hand_time"],
            iot_timeseries_id=row["iot_timeseries_id"],
            trigger_data=_jsonb(row["trigger_data"], "{}"),
            handler=row["handler"],
            operation=row["operation"],
            notes=row["notes"],
            notified_users=_jsonb(row["notified_users"], "[]"),
            metadata=_jsonb(row["metadata"], "{}"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
