"""
Rule state storage.

StateStore is rule-agnostic: it stores opaque blobs under
``{prefix}{entity_id}:track_{track_id}:{rule_name}`` with a TTL.
Each rule owns one or more tagged dataclass variants below; load_state()
refuses to decode a blob written under another variant's tag.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Optional, Type, TypeVar, Union

from shared.logging import log_event

from alarm_evaluator.errors import NotFound, StateMismatch

logger = logging.getLogger(__name__)

# Sub-track id used for state that belongs to the entity rather than one radar track.
ENTITY_TRACK = "entity"
# Sub-track id for the bed occupancy record kept by bed_fall.
OCCUPANCY_TRACK = "occupancy"

Blob = Union[bytes, str]


class StateStore:
    def __init__(self, redis, prefix: str = "alarm:state:"):
        self.redis = redis
        self.prefix = prefix

    def state_key(self, entity_id: str, track_id: str, rule_name: str) -> str:
        return f"{self.prefix}{entity_id}:track_{track_id}:{rule_name}"

    async def set_state(self, key: str, value: Blob, ttl: int) -> None:
        await self.redis.set(key, value, ex=max(1, int(ttl)))

    async def get_state(self, key: str) -> bytes:
        raw = await self.redis.get(key)
        if raw is None:
            raise NotFound(key)
        return raw

    async def exists(self, key: str) -> bool:
        return bool(await self.redis.exists(key))

    async def delete(self, key: str) -> None:
        await self.redis.delete(key)

    async def extend_ttl(self, key: str, ttl: int) -> bool:
        return bool(await self.redis.expire(key, max(1, int(ttl))))


@dataclass
class BedFallState:
    KIND = "bed_fall"

    track_id: str = ""
    lying_height: Optional[float] = None
    lying_position: Optional[list[float]] = None
    lying_time: Optional[float] = None
    left_bed_time: Optional[float] = None
    left_bed_position: Optional[list[float]] = None

    @property
    def armed(self) -> bool:
        return self.left_bed_time is not None


@dataclass
class BedOccupancyState:
    """Last occupancy seen on a bed; lets bed_fall arm only on an occupied -> unoccupied edge."""
    KIND = "bed_occupancy"

    occupied: bool = False
    observed_at: Optional[float] = None


@dataclass
class SleepadReliabilityState:
    KIND = "sleepad_reliability"

    conflict_since: Optional[float] = None
    last_hr_time: Optional[float] = None
    last_rr_time: Optional[float] = None
    radar_detected: bool = False


@dataclass
class BathroomStandingState:
    KIND = "bathroom_standing"

    track_id: str = ""
    standing_time: Optional[float] = None
    last_position: Optional[list[float]] = None
    position_change: float = 0.0


@dataclass
class TrackHeightState:
    KIND = "track_height"

    track_id: str = ""
    peak_height: Optional[float] = None
    last_height: Optional[float] = None
    last_position: Optional[list[float]] = None
    last_posture: str = ""
    last_seen: Optional[float] = None
    drop_time: Optional[float] = None


@dataclass
class DisappearWatchState:
    KIND = "disappear_watch"

    known_tracks: list[str] = field(default_factory=list)
    track_id: Optional[str] = None
    last_height: Optional[float] = None
    drop_cm: Optional[float] = None
    last_position: Optional[list[float]] = None
    disappear_time: Optional[float] = None
    no_activity_since: Optional[float] = None

    @property
    def pending(self) -> bool:
        return self.disappear_time is not None

    def clear_pending(self) -> None:
        self.track_id = None
        self.last_height = None
        self.drop_cm = None
        self.last_position = None
        self.disappear_time = None
        self.no_activity_since = None


RuleState = Union[
    BedFallState,
    BedOccupancyState,
    SleepadReliabilityState,
    BathroomStandingState,
    TrackHeightState,
    DisappearWatchState,
]
S = TypeVar(
    "S",
    BedFallState,
    BedOccupancyState,
    SleepadReliabilityState,
    BathroomStandingState,
    TrackHeightState,
    DisappearWatchState,
)


def encode_state(state: RuleState) -> str:
    return json.dumps({"kind": state.KIND, "data": asdict(state)})


def decode_state(raw: Blob, cls: Type[S]) -> S:
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise StateMismatch(f"undecodable state blob: {exc}") from exc
    if not isinstance(envelope, dict) or envelope.get("kind") != cls.KIND:
        kind = envelope.get("kind") if isinstance(envelope, dict) else None
        raise StateMismatch(f"expected {cls.KIND} state, found {kind!r}")
    data = envelope.get("data") or {}
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


async def load_state(store: StateStore, key: str, cls: Type[S]) -> Optional[S]:
    """Typed read: None when absent, expired, or not decodable as ``cls``."""
    try:
        raw = await store.get_state(key)
    except NotFound:
        return None
    try:
        return decode_state(raw, cls)
    except StateMismatch as exc:
        log_event(logger, "discarding unreadable rule state", level="WARNING", key=key, error=str(exc))
        await store.delete(key)
        return None


async def save_state(store: StateStore, key: str, state: RuleState, ttl: int) -> None:
    await store.set_state(key, encode_state(state), ttl)
