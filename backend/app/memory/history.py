"""Append-only history of memory changes (the memory_updates table)."""

from typing import Any

from supabase import Client

from ..database import MEMORY_UPDATES_TABLE, utc_now
from ..logging_config import get_logger
from .types import MemoryType, MemoryUpdate, MemoryUpdateType

logger = get_logger("archidesk.memory.history")

DEFAULT_HISTORY_LIMIT = 20


async def record_memory_update(
    db: Client,
    memory_type: MemoryType,
    memory_id: str,
    update_type: MemoryUpdateType,
    source: str,
    *,
    field_path: str | None = None,
    preference_key: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
    old_confidence: float | None = None,
    new_confidence: float | None = None,
    source_ref: str | None = None,
    source_text: str | None = None,
    updated_by: str | None = None,
) -> None:
    """Insert a history row.

    Failures are logged and swallowed: losing an audit row must never
    fail the memory write that produced it.
    """
    row = {
        "memory_type": memory_type,
        "memory_id": str(memory_id),
        "update_type": update_type,
        "field_path": field_path,
        "preference_key": preference_key,
        "old_value": old_value,
        "new_value": new_value,
        "old_confidence": old_confidence,
        "new_confidence": new_confidence,
        "source": source,
        "source_ref": source_ref,
        "source_text": source_text,
        "updated_by": str(updated_by) if updated_by is not None else None,
        "created_at": utc_now(),
    }
    try:
        db.table(MEMORY_UPDATES_TABLE).insert(row).execute()
    except Exception as e:
        logger.error(f"Failed to record {memory_type} memory update for {memory_id}: {e}")


async def get_memory_history(
    db: Client,
    memory_type: MemoryType,
    memory_id: str,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[MemoryUpdate]:
    """Most recent updates for one memory record, newest first."""
    result = (
        db.table(MEMORY_UPDATES_TABLE)
        .select("*")
        .eq("memory_type", memory_type)
        .eq("memory_id", str(memory_id))
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return [MemoryUpdate.model_validate(row) for row in result.data or []]
