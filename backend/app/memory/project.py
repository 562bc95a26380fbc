"""Project memory: hard values, learned soft context and a summary."""

from datetime import datetime, timezone
from typing import Any

from supabase import Client

from ..database import PROJECT_MEMORIES_TABLE, parse_timestamp, utc_now
from ..logging_config import get_logger, log_memory_event
from .history import get_memory_history, record_memory_update
from .scoring import (
    CONTEXT_REINFORCEMENT_STEP,
    MANUAL_CONTEXT_CONFIDENCE,
    MIN_CONTEXT_CONFIDENCE,
    NEW_CONTEXT_CONFIDENCE,
    boost_confidence,
    estimate_tokens,
)
from .types import MemoryUpdate, ProjectMemory, SoftContext, SynthesisSource

logger = get_logger("archidesk.memory.project")

MAX_TOKEN_ESTIMATE = 800
MAX_SYNTHESIS_SOURCES = 50


def _row_to_memory(row: dict) -> ProjectMemory:
    return ProjectMemory(
        project_id=str(row["project_id"]),
        hard_values=row.get("hard_values") or {},
        soft_context=[SoftContext.model_validate(c) for c in row.get("soft_context") or []],
        memory_content=row.get("memory_content") or "",
        project_summary=row.get("project_summary"),
        synthesis_sources=[
            SynthesisSource.model_validate(s) for s in row.get("synthesis_sources") or []
        ],
        token_estimate=row.get("token_count") or 0,
        last_synthesized_at=parse_timestamp(row.get("last_synthesized_at")),
    )


async def get_project_memory(db: Client, project_id: str) -> ProjectMemory | None:
    result = db.table(PROJECT_MEMORIES_TABLE).select("*").eq("project_id", project_id).execute()
    return _row_to_memory(result.data[0]) if result.data else None


async def save_project_memory(db: Client, memory: ProjectMemory) -> None:
    memory.token_estimate = estimate_tokens(format_project_memory_for_prompt(memory))
    if memory.token_estimate > MAX_TOKEN_ESTIMATE:
        logger.warning(
            f"Project memory for {memory.project_id} exceeds token limit "
            f"({memory.token_estimate} > {MAX_TOKEN_ESTIMATE})"
        )

    db.table(PROJECT_MEMORIES_TABLE).upsert(
        {
            "project_id": memory.project_id,
            "hard_values": memory.hard_values,
            "soft_context": [c.model_dump(mode="json") for c in memory.soft_context],
            "memory_content": memory.memory_content,
            "project_summary": memory.project_summary,
            "synthesis_sources": [s.model_dump(mode="json") for s in memory.synthesis_sources],
            "token_count": memory.token_estimate,
            "last_synthesized_at": (
                memory.last_synthesized_at.isoformat() if memory.last_synthesized_at else None
            ),
            "updated_at": utc_now(),
        },
        on_conflict="project_id",
    ).execute()


async def get_or_create_project_memory(db: Client, project_id: str) -> ProjectMemory:
    memory = await get_project_memory(db, project_id)
    if memory is not None:
        return memory
    memory = ProjectMemory(project_id=project_id)
    await save_project_memory(db, memory)
    return memory


def add_synthesis_source(memory: ProjectMemory, source_type: str, ref: str | None) -> None:
    """Remember which chat/document/etc. contributed; keeps the latest 50."""
    if not ref:
        return
    if any(s.type == source_type and s.ref == ref for s in memory.synthesis_sources):
        return
    memory.synthesis_sources.append(SynthesisSource(type=source_type, ref=ref))
    memory.synthesis_sources = memory.synthesis_sources[-MAX_SYNTHESIS_SOURCES:]


# =============================================================================
# Hard values
# =============================================================================

async def update_hard_values(
    db: Client,
    project_id: str,
    values: dict[str, Any],
    source: str = "manual",
    source_ref: str | None = None,
    updated_by: str | None = None,
) -> ProjectMemory:
    """Merge structured facts into the project; one history row per changed key."""
    memory = await get_or_create_project_memory(db, project_id)
    old_values = dict(memory.hard_values)

    changed = {k: v for k, v in values.items() if v is not None and old_values.get(k) != v}
    memory.hard_values.update({k: v for k, v in values.items() if v is not None})
    add_synthesis_source(memory, source, source_ref)
    await save_project_memory(db, memory)

    for key, value in changed.items():
        await record_memory_update(
            db,
            "project",
            project_id,
            "learned",
            source,
            field_path=f"hard_values.{key}",
            old_value=old_values.get(key),
            new_value=value,
            source_ref=source_ref,
            updated_by=updated_by,
        )
        log_memory_event("project", project_id, "hard_value", f"{key}={value!r}")

    return memory


async def get_hard_value(db: Client, project_id: str, key: str) -> Any:
    memory = await get_project_memory(db, project_id)
    return memory.hard_values.get(key) if memory else None


async def remove_hard_value(
    db: Client, project_id: str, key: str, updated_by: str | None = None
) -> bool:
    memory = await get_project_memory(db, project_id)
    if memory is None or key not in memory.hard_values:
        return False

    old_value = memory.hard_values.pop(key)
    await save_project_memory(db, memory)

    await record_memory_update(
        db,
        "project",
        project_id,
        "user_delete",
        "manual",
        field_path=f"hard_values.{key}",
        old_value=old_value,
        updated_by=updated_by,
    )
    log_memory_event("project", project_id, "remove_hard_value", key)
    return True


# =============================================================================
# Soft context
# =============================================================================

async def add_soft_context(
    db: Client,
    project_id: str,
    category: str,
    content: str,
    source: str = "chat",
    source_ref: str | None = None,
    updated_by: str | None = None,
) -> SoftContext:
    """Add context, or reinforce it if the same fact is already known."""
    memory = await get_or_create_project_memory(db, project_id)

    existing = next(
        (
            c
            for c in memory.soft_context
            if c.category == category and c.content.lower() == content.lower()
        ),
        None,
    )
    if existing is not None:
        old_confidence = existing.confidence
        existing.confidence = boost_confidence(existing.confidence, CONTEXT_REINFORCEMENT_STEP)
        await save_project_memory(db, memory)
        await record_memory_update(
            db,
            "project",
            project_id,
            "reinforced",
            source,
            field_path="soft_context",
            new_value={"category": category, "content": existing.content},
            old_confidence=old_confidence,
            new_confidence=existing.confidence,
            source_ref=source_ref,
            updated_by=updated_by,
        )
        log_memory_event("project", project_id, "reinforce_context", category)
        return existing

    context = SoftContext(
        category=category,
        content=content,
        source=source,
        source_ref=source_ref,
        confidence=NEW_CONTEXT_CONFIDENCE,
    )
    memory.soft_context.append(context)
    add_synthesis_source(memory, source, source_ref)
    await save_project_memory(db, memory)

    await record_memory_update(
        db,
        "project",
        project_id,
        "learned",
        source,
        field_path="soft_context",
        new_value={"category": category, "content": content},
        new_confidence=context.confidence,
        source_ref=source_ref,
        updated_by=updated_by,
    )
    log_memory_event("project", project_id, "add_context", f"{category}={content!r}")
    return context


async def remove_soft_context(
    db: Client, project_id: str, context_id: str, updated_by: str | None = None
) -> bool:
    memory = await get_project_memory(db, project_id)
    if memory is None:
        return False
    context = next((c for c in memory.soft_context if c.id == context_id), None)
    if context is None:
        return False

    memory.soft_context.remove(context)
    await save_project_memory(db, memory)

    await record_memory_update(
        db,
        "project",
        project_id,
        "user_delete",
        "manual",
        field_path="soft_context",
        old_value={"category": context.category, "content": context.content},
        updated_by=updated_by,
    )
    log_memory_event("project", project_id, "remove_context", context.category)
    return True


async def update_soft_context(
    db: Client,
    project_id: str,
    context_id: str,
    new_content: str,
    updated_by: str | None = None,
) -> SoftContext | None:
    """Manual edit of a context entry; marks it as high-confidence manual input."""
    memory = await get_project_memory(db, project_id)
    if memory is None:
        return None
    context = next((c for c in memory.soft_context if c.id == context_id), None)
    if context is None:
        return None

    old_content = context.content
    context.content = new_content
    context.confidence = MANUAL_CONTEXT_CONFIDENCE
    context.source = "manual"
    context.learned_at = datetime.now(timezone.utc)
    await save_project_memory(db, memory)

    await record_memory_update(
        db,
        "project",
        project_id,
        "user_edit",
        "manual",
        field_path="soft_context",
        old_value={"category": context.category, "content": old_content},
        new_value={"category": context.category, "content": new_content},
        updated_by=updated_by,
    )
    log_memory_event("project", project_id, "edit_context", context.category)
    return context


# =============================================================================
# Summary & lifecycle
# =============================================================================

async def update_project_summary(db: Client, project_id: str, summary: str) -> ProjectMemory:
    memory = await get_or_create_project_memory(db, project_id)
    memory.project_summary = summary
    memory.last_synthesized_at = datetime.now(timezone.utc)
    await save_project_memory(db, memory)
    log_memory_event("project", project_id, "summary")
    return memory


async def clear_project_memory(db: Client, project_id: str) -> None:
    db.table(PROJECT_MEMORIES_TABLE).delete().eq("project_id", project_id).execute()
    log_memory_event("project", project_id, "clear")


async def get_project_memory_history(
    db: Client, project_id: str, limit: int = 20
) -> list[MemoryUpdate]:
    return await get_memory_history(db, "project", project_id, limit)


# =============================================================================
# Prompt formatting
# =============================================================================

def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _format_amount(value: Any) -> str:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return str(value)
    if number.is_integer():
        return f"{int(number):,}"
    return f"{number:,.2f}"


def format_hard_values(hard_values: dict[str, Any]) -> list[str]:
    """Human-readable lines for the known hard-value keys."""
    hv = hard_values
    lines = []
    if hv.get("bvo"):
        lines.append(f"BVO: {_format_number(hv['bvo'])} m²")
    if hv.get("go"):
        lines.append(f"GO: {_format_number(hv['go'])} m²")
    if hv.get("units"):
        lines.append(f"Units: {_format_number(hv['units'])}")
    groups = hv.get("target_groups")
    if isinstance(groups, str):
        groups = [groups]
    if groups:
        lines.append(f"Target groups: {', '.join(map(str, groups))}")
    if hv.get("phase"):
        lines.append(f"Phase: {hv['phase']}")
    location = hv.get("location")
    if isinstance(location, dict) and location.get("address"):
        lines.append(f"Location: {location['address']}")
    if hv.get("mpg_target"):
        lines.append(f"MPG target: {_format_number(hv['mpg_target'])} EUR/m²/year")
    if hv.get("budget"):
        lines.append(f"Budget: €{_format_amount(hv['budget'])}")
    if hv.get("building_type"):
        lines.append(f"Building type: {hv['building_type']}")
    return lines


def format_project_memory_for_prompt(memory: ProjectMemory) -> str:
    parts = []

    fact_lines = format_hard_values(memory.hard_values)
    if fact_lines:
        parts.append("Project facts:\n" + "\n".join(f"- {line}" for line in fact_lines))

    confident = sorted(
        (c for c in memory.soft_context if c.confidence >= MIN_CONTEXT_CONFIDENCE),
        key=lambda c: c.confidence,
        reverse=True,
    )
    if confident:
        parts.append("Project context:\n" + "\n".join(f"- {c.category}: {c.content}" for c in confident))

    if memory.project_summary:
        parts.append(f"Summary: {memory.project_summary}")

    return "\n\n".join(parts)
