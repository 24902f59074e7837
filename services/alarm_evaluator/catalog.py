"""Read-only queries against the cards/rooms tables (entity catalog)."""
from __future__ import annotations

import json
import logging

from alarm_evaluator.models import DeviceBinding, Entity

logger = logging.getLogger(__name__)

BATHROOM_KEYWORDS = ("bathroom", "restroom", "toilet")


def looks_like_bathroom(*names) -> bool:
    for name in names:
        lowered = (name or "").lower()
        if any(keyword in lowered for keyword in BATHROOM_KEYWORDS):
            return True
    return False


def parse_devices(raw) -> list[DeviceBinding]:
    """cards.devices is JSONB; asyncpg hands it back as text unless a codec is set."""
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("cards.devices is not valid JSON", extra={"raw": str(raw)[:200]})
            return []
    if not isinstance(raw, list):
        return []
    return [DeviceBinding.from_dict(d) for d in raw if isinstance(d, dict)]


def entity_from_row(row) -> Entity:
    return Entity(
        entity_id=row["card_id"],
        tenant_id=row["tenant_id"],
        kind=row["card_type"],
        bed_id=row["bed_id"],
        unit_id=row["unit_id"] or "",
        name=row["card_name"] or "",
        room_id=row["room_id"],
        devices=parse_devices(row["devices"]),
    )


class EntityCatalog:
    def __init__(self, pool):
        self.pool = pool

    async def list_entities(self, tenant_id: str) -> list[Entity]:
        """All cards of a tenant in a stable order, with their device bindings."""
        if not tenant_id:
            raise ValueError("tenant_id is required")
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT
                    c.card_id,
                    c.tenant_id,
                    c.card_type,
                    c.bed_id,
                    c.unit_id,
                    c.card_name,
                    c.devices,
                    COALESCE(
                        (SELECT r.room_id FROM rooms r JOIN beds b ON r.room_id = b.room_id
                          WHERE b.bed_id = c.bed_id AND r.tenant_id = c.tenant_id LIMIT 1),
                        (SELECT r.room_id FROM rooms r
                          WHERE r.unit_id = c.unit_id AND r.tenant_id = c.tenant_id LIMIT 1)
                    ) AS room_id
                FROM cards c
                WHERE c.tenant_id = $1
                ORDER BY c.card_id
                """,
                tenant_id,
            )
        return [entity_from_row(row) for row in rows]

    async def is_bathroom(self, tenant_id: str, room_id: str) -> bool:
        """True when the room's name or its unit's name names a bathroom."""
        if not tenant_id or not room_id:
            return False
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT r.room_name, u.unit_name
                FROM rooms r
                JOIN units u ON r.unit_id = u.unit_id AND r.tenant_id = u.tenant_id
                WHERE r.room_id = $1 AND r.tenant_id = $2
                """,
                room_id,
                tenant_id,
            )
        if row is None:
            return False
        return looks_like_bathroom(row["room_name"], row["unit_name"])
