"""Domain memory: organization-wide knowledge and cross-project patterns.

Explicit knowledge is entered by organization admins and is always
included in prompts. Learned patterns start weak and only reach the
prompt once several projects have produced the same observation.
"""

from supabase import Client

from ..database import DOMAIN_MEMORIES_TABLE, parse_timestamp, utc_now
from ..logging_config import get_logger, log_memory_event
from .history import get_memory_history, record_memory_update
from .scoring import (
    MIN_PATTERN_CONFIDENCE,
    MIN_PATTERN_PROJECT_COUNT,
    NEW_PATTERN_CONFIDENCE,
    PATTERN_REINFORCEMENT_STEP,
    boost_confidence,
    estimate_tokens,
)
from .types import DomainKnowledge, DomainMemory, DomainPattern, MemoryUpdate, new_id

logger = get_logger("archidesk.memory.domain")

MAX_TOKEN_ESTIMATE = 500


def _row_to_memory(row: dict) -> DomainMemory:
    return DomainMemory(
        id=str(row["id"]),
        org_id=str(row["org_id"]),
        explicit_knowledge=[
            DomainKnowledge.model_validate(k) for k in row.get("explicit_knowledge") or []
        ],
        learned_patterns=[
            DomainPattern.model_validate(p) for p in row.get("learned_patterns") or []
        ],
        token_estimate=row.get("token_estimate") or 0,
        last_synthesized_at=parse_timestamp(row.get("last_synthesized_at")),
        last_updated_by=row.get("last_updated_by"),
    )


async def get_domain_memory(db: Client, org_id: str) -> DomainMemory | None:
    result = db.table(DOMAIN_MEMORIES_TABLE).select("*").eq("org_id", org_id).execute()
    return _row_to_memory(result.data[0]) if result.data else None


async def get_or_create_domain_memory(db: Client, org_id: str) -> DomainMemory:
    memory = await get_domain_memory(db, org_id)
    if memory is not None:
        return memory

    now = utc_now()
    row = {
        "id": new_id(),
        "org_id": org_id,
        "explicit_knowledge": [],
        "learned_patterns": [],
        "token_estimate": 0,
        "created_at": now,
        "updated_at": now,
    }
    result = db.table(DOMAIN_MEMORIES_TABLE).insert(row).execute()
    return _row_to_memory(result.data[0] if result.data else row)


async def save_domain_memory(
    db: Client, memory: DomainMemory, updated_by: str | None = None
) -> None:
    memory.token_estimate = estimate_tokens(format_domain_memory_for_prompt(memory))
    if memory.token_estimate > MAX_TOKEN_ESTIMATE:
        logger.warning(
            f"Domain memory for org {memory.org_id} exceeds token limit "
            f"({memory.token_estimate} > {MAX_TOKEN_ESTIMATE})"
        )
    if updated_by is not None:
        memory.last_updated_by = str(updated_by)

    db.table(DOMAIN_MEMORIES_TABLE).update(
        {
            "explicit_knowledge": [k.model_dump(mode="json") for k in memory.explicit_knowledge],
            "learned_patterns": [p.model_dump(mode="json") for p in memory.learned_patterns],
            "token_estimate": memory.token_estimate,
            "last_updated_by": memory.last_updated_by,
            "updated_at": utc_now(),
        }
    ).eq("id", memory.id).execute()


# =============================================================================
# Explicit knowledge
# =============================================================================

async def add_explicit_knowledge(
    db: Client,
    org_id: str,
    category: str,
    title: str,
    content: str,
    admin_user_id: str,
) -> DomainKnowledge:
    memory = await get_or_create_domain_memory(db, org_id)
    knowledge = DomainKnowledge(
        category=category,
        title=title,
        content=content,
        added_by=str(admin_user_id),
    )
    memory.explicit_knowledge.append(knowledge)
    await save_domain_memory(db, memory, admin_user_id)

    await record_memory_update(
        db,
        "domain",
        memory.id,
        "admin_edit",
        "admin",
        field_path="explicit_knowledge",
        new_value={"category": category, "title": title},
        updated_by=admin_user_id,
    )
    log_memory_event("domain", org_id, "add_knowledge", title)
    return knowledge


async def update_explicit_knowledge(
    db: Client,
    org_id: str,
    knowledge_id: str,
    updates: dict,
    admin_user_id: str,
) -> DomainKnowledge | None:
    """Update category/title/content; blank fields in ``updates`` are ignored."""
    memory = await get_domain_memory(db, org_id)
    if memory is None:
        return None
    knowledge = next((k for k in memory.explicit_knowledge if k.id == knowledge_id), None)
    if knowledge is None:
        return None

    old_title = knowledge.title
    for field in ("category", "title", "content"):
        if updates.get(field):
            setattr(knowledge, field, updates[field])
    await save_domain_memory(db, memory, admin_user_id)

    await record_memory_update(
        db,
        "domain",
        memory.id,
        "admin_edit",
        "admin",
        field_path="explicit_knowledge",
        old_value={"title": old_title},
        new_value={"title": knowledge.title},
        updated_by=admin_user_id,
    )
    log_memory_event("domain", org_id, "edit_knowledge", knowledge.title)
    return knowledge


async def remove_explicit_knowledge(
    db: Client, org_id: str, knowledge_id: str, admin_user_id: str
) -> bool:
    memory = await get_domain_memory(db, org_id)
    if memory is None:
        return False
    knowledge = next((k for k in memory.explicit_knowledge if k.id == knowledge_id), None)
    if knowledge is None:
        return False

    memory.explicit_knowledge.remove(knowledge)
    await save_domain_memory(db, memory, admin_user_id)

    await record_memory_update(
        db,
        "domain",
        memory.id,
        "user_delete",
        "admin",
        field_path="explicit_knowledge",
        old_value={"category": knowledge.category, "title": knowledge.title},
        updated_by=admin_user_id,
    )
    log_memory_event("domain", org_id, "remove_knowledge", knowledge.title)
    return True


# =============================================================================
# Learned patterns
# =============================================================================

async def add_learned_pattern(
    db: Client,
    org_id: str,
    pattern: str,
    evidence: str,
    project_id: str | None = None,
) -> DomainPattern:
    """Add a pattern, or reinforce it when another project shows the same thing."""
    memory = await get_or_create_domain_memory(db, org_id)

    existing = next(
        (p for p in memory.learned_patterns if p.pattern.lower() == pattern.lower()), None
    )
    if existing is not None:
        old_confidence = existing.confidence
        existing.project_count += 1
        existing.confidence = boost_confidence(existing.confidence, PATTERN_REINFORCEMENT_STEP)
        existing.evidence = f"{existing.evidence}; {evidence}" if existing.evidence else evidence
        await save_domain_memory(db, memory)
        await record_memory_update(
            db,
            "domain",
            memory.id,
            "reinforced",
            "system",
            field_path="learned_patterns",
            new_value={"pattern": existing.pattern, "project_count": existing.project_count},
            old_confidence=old_confidence,
            new_confidence=existing.confidence,
            source_ref=project_id,
        )
        log_memory_event(
            "domain", org_id, "reinforce_pattern", f"{pattern!r} projects={existing.project_count}"
        )
        return existing

    new_pattern = DomainPattern(
        pattern=pattern,
        evidence=evidence,
        project_count=1,
        confidence=NEW_PATTERN_CONFIDENCE,
    )
    memory.learned_patterns.append(new_pattern)
    await save_domain_memory(db, memory)

    await record_memory_update(
        db,
        "domain",
        memory.id,
        "learned",
        "system",
        field_path="learned_patterns",
        new_value={"pattern": pattern},
        new_confidence=new_pattern.confidence,
        source_ref=project_id,
    )
    log_memory_event("domain", org_id, "add_pattern", repr(pattern))
    return new_pattern


async def remove_learned_pattern(
    db: Client, org_id: str, pattern_id: str, admin_user_id: str
) -> bool:
    memory = await get_domain_memory(db, org_id)
    if memory is None:
        return False
    pattern = next((p for p in memory.learned_patterns if p.id == pattern_id), None)
    if pattern is None:
        return False

    memory.learned_patterns.remove(pattern)
    await save_domain_memory(db, memory, admin_user_id)

    await record_memory_update(
        db,
        "domain",
        memory.id,
        "user_delete",
        "admin",
        field_path="learned_patterns",
        old_value={"pattern": pattern.pattern},
        updated_by=admin_user_id,
    )
    log_memory_event("domain", org_id, "remove_pattern", repr(pattern.pattern))
    return True


async def get_domain_memory_history(
    db: Client, org_id: str, limit: int = 20
) -> list[MemoryUpdate]:
    """History is keyed by the memory row id, not the org id."""
    memory = await get_domain_memory(db, org_id)
    if memory is None:
        return []
    return await get_memory_history(db, "domain", memory.id, limit)


# =============================================================================
# Prompt formatting
# =============================================================================

def format_domain_memory_for_prompt(memory: DomainMemory) -> str:
    parts = []

    if memory.explicit_knowledge:
        by_category: dict[str, list[DomainKnowledge]] = {}
        for item in memory.explicit_knowledge:
            by_category.setdefault(item.category, []).append(item)

        lines = []
        for category, items in by_category.items():
            lines.append(f"{category}:")
            lines.extend(f"  - {item.title}: {item.content}" for item in items)
        parts.append("Organization knowledge:\n" + "\n".join(lines))

    confident = sorted(
        (
            p
            for p in memory.learned_patterns
            if p.confidence >= MIN_PATTERN_CONFIDENCE and p.project_count >= MIN_PATTERN_PROJECT_COUNT
        ),
        key=lambda p: p.confidence,
        reverse=True,
    )
    if confident:
        lines = [f"- {p.pattern} (based on {p.project_count} projects)" for p in confident]
        parts.append("Learned patterns:\n" + "\n".join(lines))

    return "\n\n".join(parts)
