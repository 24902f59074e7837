"""Durable alarm_events access: insert and recency lookup for dedup."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from alarm_evaluator.builder import now_utc
from alarm_evaluator.models import AlarmEvent

logger = logging.getLogger(__name__)

ALARM_EVENT_COLUMNS = """
    event_id,
    tenant_id,
    device_id,
    event_type,
    category,
    alarm_level,
    alarm_status,
    triggered_at,
    hand_time,
    iot_timeseries_id,
    trigger_data,
    handler,
    operation,
    notes,
    notified_users,
    metadata,
    created_at,
    updated_at
"""


class AlarmStore:
    def __init__(self, pool):
        self.pool = pool

    async def create(self, event: AlarmEvent) -> None:
        if not event.tenant_id:
            raise ValueError("tenant_id is required")
        if not event.device_id:
            raise ValueError("device_id is required")
        if not event.event_type:
            raise ValueError("event_type is required")
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO alarm_events ({ALARM_EVENT_COLUMNS})
                VALUES ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10,
                        $11::jsonb, $12, $13, $14, $15::jsonb, $16::jsonb, $17, $18)
                """,
                event.event_id,
                event.tenant_id,
                event.device_id,
                event.event_type,
                event.category,
                event.alarm_level,
                event.alarm_status,
                event.triggered_at,
                event.hand_time,
                event.iot_timeseries_id,
                event.trigger_data,
                event.handler,
                event.operation,
                event.notes,
                event.notified_users,
                event.metadata,
                event.created_at,
                event.updated_at,
            )

    async def get_recent(
        self,
        tenant_id: str,
        device_id: str,
        event_type: str,
        window_minutes: int,
    ) -> Optional[AlarmEvent]:
        """Most recent active alarm of this exact type triggered inside the window, if any."""
        if not tenant_id or not device_id or not event_type:
            raise ValueError("tenant_id, device_id and event_type are required")
        since = now_utc() - timedelta(minutes=window_minutes)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {ALARM_EVENT_COLUMNS}
                FROM alarm_events
                WHERE tenant_id = $1
                  AND device_id = $2
                  AND event_type = $3
                  AND triggered_at > $4
                  AND alarm_status = 'active'
                  AND (metadata->>'deleted_at' IS NULL)
                ORDER BY triggered_at DESC
                LIMIT 1
                """,
                tenant_id,
                device_id,
                event_type,
                since,
            )
        if row is None:
            return None
        return AlarmEvent.from_record(row)

    async def has_recent(self, tenant_id: str, device_id: str, event_type: str, window_minutes: int) -> bool:
        return await self.get_recent(tenant_id, device_id, event_type, window_minutes) is not None
