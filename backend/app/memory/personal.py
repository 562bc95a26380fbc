"""Personal memory: per-user identity and confidence-scored preferences.

A preference is never overwritten by a single contrary observation.
New values replace an existing preference only when it is weak or when
the user corrects it explicitly. Established preferences accumulate
contradictions until their confidence drops.
"""

from datetime import datetime, timezone

from supabase import Client

from ..database import USER_MEMORIES_TABLE, parse_timestamp, utc_now
from ..logging_config import get_logger, log_memory_event
from .history import get_memory_history, record_memory_update
from .scoring import (
    CONTRADICTION_THRESHOLD_FOR_REVIEW,
    ESTABLISHED_CONFIDENCE_THRESHOLD,
    EXPLICIT_PREFERENCE_CONFIDENCE,
    EXPLICIT_PREFERENCE_REINFORCEMENTS,
    MANUAL_PREFERENCE_REINFORCEMENTS,
    MIN_PROMPT_PREFERENCE_CONFIDENCE,
    MIN_REINFORCEMENTS_FOR_CONTRADICTION,
    NEW_PREFERENCE_CONFIDENCE,
    calculate_confidence,
    estimate_tokens,
)
from .types import (
    LearnedPreference,
    MemoryUpdate,
    PersonalMemory,
    PreferenceUpdateResult,
    UserIdentity,
)

logger = get_logger("archidesk.memory.personal")

MAX_TOKEN_ESTIMATE = 600


def _snapshot(pref: LearnedPreference) -> dict:
    return {"value": pref.value, "confidence": pref.confidence}


def _row_to_memory(user_id: str, row: dict) -> PersonalMemory:
    return PersonalMemory(
        user_id=str(user_id),
        identity=UserIdentity.model_validate(row.get("identity") or {}),
        memory_content=row.get("memory_content") or "",
        preferences=[LearnedPreference.model_validate(p) for p in row.get("preferences_v2") or []],
        token_estimate=row.get("token_count") or 0,
        last_synthesized_at=parse_timestamp(row.get("last_analysis_at")),
    )


async def get_personal_memory(db: Client, user_id: str) -> PersonalMemory:
    """Load a user's memory, or an empty one if nothing was stored yet."""
    result = db.table(USER_MEMORIES_TABLE).select("*").eq("user_id", str(user_id)).execute()
    if not result.data:
        return PersonalMemory(user_id=str(user_id))
    return _row_to_memory(user_id, result.data[0])


async def save_personal_memory(db: Client, memory: PersonalMemory) -> None:
    """Upsert the memory row, refreshing the token estimate."""
    memory.token_estimate = estimate_tokens(format_personal_memory_for_prompt(memory))
    if memory.token_estimate > MAX_TOKEN_ESTIMATE:
        logger.warning(
            f"Personal memory for user {memory.user_id} exceeds token limit "
            f"({memory.token_estimate} > {MAX_TOKEN_ESTIMATE})"
        )

    db.table(USER_MEMORIES_TABLE).upsert(
        {
            "user_id": memory.user_id,
            "identity": memory.identity.model_dump(mode="json", exclude_none=True),
            "memory_content": memory.memory_content,
            "preferences_v2": [p.model_dump(mode="json") for p in memory.preferences],
            "token_count": memory.token_estimate,
            "last_analysis_at": (
                memory.last_synthesized_at.isoformat() if memory.last_synthesized_at else None
            ),
            "updated_at": utc_now(),
        },
        on_conflict="user_id",
    ).execute()


def _find_by_key(memory: PersonalMemory, key: str) -> LearnedPreference | None:
    return next((p for p in memory.preferences if p.key == key), None)


def _find_by_id(memory: PersonalMemory, preference_id: str) -> LearnedPreference | None:
    return next((p for p in memory.preferences if p.id == preference_id), None)


def _reset_preference(
    pref: LearnedPreference,
    value: str,
    reinforcements: int,
    confidence: float,
    source: str,
    source_text: str | None,
) -> None:
    pref.value = value
    pref.reinforcements = reinforcements
    pref.contradictions = 0
    pref.confidence = confidence
    pref.learned_from = source
    pref.learned_from_text = source_text
    pref.learned_at = datetime.now(timezone.utc)
    pref.last_reinforced_at = None


def apply_contradiction(
    pref: LearnedPreference,
    new_value: str,
    source: str,
    source_text: str | None = None,
    is_explicit: bool = False,
) -> PreferenceUpdateResult:
    """Resolve a new value that disagrees with a stored preference.

    Mutates ``pref`` in place and reports whether it was replaced
    (``updated``) or only had a contradiction counted (``contradicted``).
    """
    previous_value = pref.value
    previous_confidence = pref.confidence

    def result(action: str) -> PreferenceUpdateResult:
        return PreferenceUpdateResult(
            action=action,
            preference=pref,
            previous_value=previous_value,
            previous_confidence=previous_confidence,
        )

    if is_explicit:
        pref.contradictions += 1
        pref.confidence = calculate_confidence(pref.reinforcements, pref.contradictions)
        if (
            pref.confidence < EXPLICIT_PREFERENCE_CONFIDENCE
            or pref.reinforcements < MIN_REINFORCEMENTS_FOR_CONTRADICTION
        ):
            logger.info(f"Explicit correction for {pref.key}: {previous_value!r} -> {new_value!r}")
            _reset_preference(
                pref,
                new_value,
                EXPLICIT_PREFERENCE_REINFORCEMENTS,
                EXPLICIT_PREFERENCE_CONFIDENCE,
                source,
                source_text,
            )
            return result("updated")
        return result("contradicted")

    if pref.confidence >= ESTABLISHED_CONFIDENCE_THRESHOLD:
        pref.contradictions += 1
        pref.confidence = calculate_confidence(pref.reinforcements, pref.contradictions)
        if pref.contradictions >= CONTRADICTION_THRESHOLD_FOR_REVIEW:
            logger.warning(
                f"Preference {pref.key} has {pref.contradictions} contradictions - may need review"
            )
        return result("contradicted")

    if pref.reinforcements < MIN_REINFORCEMENTS_FOR_CONTRADICTION:
        logger.info(f"Replacing weak preference {pref.key}: {previous_value!r} -> {new_value!r}")
        _reset_preference(pref, new_value, 1, NEW_PREFERENCE_CONFIDENCE, source, source_text)
        return result("updated")

    pref.contradictions += 1
    pref.confidence = calculate_confidence(pref.reinforcements, pref.contradictions)
    return result("contradicted")


async def update_preference(
    db: Client,
    user_id: str,
    key: str,
    value: str,
    source: str = "chat",
    source_ref: str | None = None,
    source_text: str | None = None,
    is_explicit: bool = False,
) -> PreferenceUpdateResult:
    """Create, reinforce or contradict a preference.

    1. Unknown key: create it (explicit statements start stronger).
    2. Same value: reinforce.
    3. Different value: resolve with ``apply_contradiction``.
    """
    memory = await get_personal_memory(db, user_id)
    existing = _find_by_key(memory, key)
    old_snapshot = _snapshot(existing) if existing else None

    if existing is None:
        pref = LearnedPreference(
            key=key,
            value=value,
            confidence=EXPLICIT_PREFERENCE_CONFIDENCE if is_explicit else NEW_PREFERENCE_CONFIDENCE,
            reinforcements=EXPLICIT_PREFERENCE_REINFORCEMENTS if is_explicit else 1,
            contradictions=0,
            learned_from=source,
            learned_from_text=source_text,
        )
        memory.preferences.append(pref)
        result = PreferenceUpdateResult(action="created", preference=pref)
        update_type = "learned"
    elif existing.value == value:
        previous_confidence = existing.confidence
        existing.reinforcements += 1
        existing.confidence = calculate_confidence(existing.reinforcements, existing.contradictions)
        existing.last_reinforced_at = datetime.now(timezone.utc)
        result = PreferenceUpdateResult(
            action="reinforced",
            preference=existing,
            previous_confidence=previous_confidence,
        )
        update_type = "reinforced"
    else:
        result = apply_contradiction(existing, value, source, source_text, is_explicit)
        update_type = "learned" if result.action == "updated" else "contradicted"

    await save_personal_memory(db, memory)

    await record_memory_update(
        db,
        "personal",
        str(user_id),
        update_type,
        source,
        preference_key=key,
        old_value=old_snapshot,
        new_value=_snapshot(result.preference),
        old_confidence=old_snapshot["confidence"] if old_snapshot else None,
        new_confidence=result.preference.confidence,
        source_ref=source_ref,
        source_text=source_text,
        updated_by=user_id,
    )

    log_memory_event(
        "personal",
        str(user_id),
        result.action,
        f"{key}={value!r} confidence={result.preference.confidence:.2f}",
    )
    return result


async def update_identity(db: Client, user_id: str, identity: dict) -> PersonalMemory:
    """Merge identity fields; empty values do not erase what is known."""
    memory = await get_personal_memory(db, user_id)
    merged = memory.identity.model_dump()
    merged.update({k: v for k, v in identity.items() if v})
    memory.identity = UserIdentity.model_validate(merged)
    await save_personal_memory(db, memory)
    log_memory_event("personal", str(user_id), "identity", ",".join(sorted(identity)))
    return memory


async def delete_preference(db: Client, user_id: str, preference_id: str) -> bool:
    memory = await get_personal_memory(db, user_id)
    pref = _find_by_id(memory, preference_id)
    if pref is None:
        return False

    memory.preferences.remove(pref)
    await save_personal_memory(db, memory)

    await record_memory_update(
        db,
        "personal",
        str(user_id),
        "user_delete",
        "manual",
        preference_key=pref.key,
        old_value=_snapshot(pref),
        old_confidence=pref.confidence,
        updated_by=user_id,
    )
    log_memory_event("personal", str(user_id), "delete", pref.key)
    return True


async def edit_preference(
    db: Client,
    user_id: str,
    preference_id: str,
    new_value: str,
) -> LearnedPreference | None:
    """Manual override: the new value starts at the established baseline."""
    memory = await get_personal_memory(db, user_id)
    pref = _find_by_id(memory, preference_id)
    if pref is None:
        return None

    old_snapshot = _snapshot(pref)
    pref.value = new_value
    pref.reinforcements = MANUAL_PREFERENCE_REINFORCEMENTS
    pref.contradictions = 0
    pref.confidence = calculate_confidence(MANUAL_PREFERENCE_REINFORCEMENTS, 0)
    pref.learned_from = "manual"
    pref.learned_at = datetime.now(timezone.utc)

    await save_personal_memory(db, memory)

    await record_memory_update(
        db,
        "personal",
        str(user_id),
        "user_edit",
        "manual",
        preference_key=pref.key,
        old_value=old_snapshot,
        new_value=_snapshot(pref),
        old_confidence=old_snapshot["confidence"],
        new_confidence=pref.confidence,
        updated_by=user_id,
    )
    log_memory_event("personal", str(user_id), "edit", f"{pref.key}={new_value!r}")
    return pref


async def add_preference_manually(
    db: Client,
    user_id: str,
    key: str,
    value: str,
) -> LearnedPreference:
    """Add a preference by hand; an existing key is edited instead."""
    memory = await get_personal_memory(db, user_id)
    existing = _find_by_key(memory, key)
    if existing is not None:
        return await edit_preference(db, user_id, existing.id, value)

    pref = LearnedPreference(
        key=key,
        value=value,
        confidence=calculate_confidence(MANUAL_PREFERENCE_REINFORCEMENTS, 0),
        reinforcements=MANUAL_PREFERENCE_REINFORCEMENTS,
        contradictions=0,
        learned_from="manual",
    )
    memory.preferences.append(pref)
    await save_personal_memory(db, memory)

    await record_memory_update(
        db,
        "personal",
        str(user_id),
        "learned",
        "manual",
        preference_key=key,
        new_value=_snapshot(pref),
        new_confidence=pref.confidence,
        updated_by=user_id,
    )
    log_memory_event("personal", str(user_id), "add", f"{key}={value!r}")
    return pref


async def clear_personal_memory(db: Client, user_id: str) -> None:
    """Delete the user's memory row entirely."""
    db.table(USER_MEMORIES_TABLE).delete().eq("user_id", str(user_id)).execute()
    log_memory_event("personal", str(user_id), "clear")


async def get_personal_memory_history(
    db: Client, user_id: str, limit: int = 20
) -> list[MemoryUpdate]:
    return await get_memory_history(db, "personal", str(user_id), limit)


def format_personal_memory_for_prompt(memory: PersonalMemory) -> str:
    parts = []

    identity = memory.identity
    if identity.name or identity.position:
        who = []
        if identity.name:
            who.append(identity.name)
        if identity.position:
            who.append(f"({identity.position})")
        parts.append(f"User: {' '.join(who)}")

    confident = sorted(
        (p for p in memory.preferences if p.confidence >= MIN_PROMPT_PREFERENCE_CONFIDENCE),
        key=lambda p: p.confidence,
        reverse=True,
    )
    if confident:
        lines = "\n".join(f"- {p.key}: {p.value}" for p in confident)
        parts.append(f"Known preferences:\n{lines}")

    if memory.memory_content and memory.memory_content.strip():
        parts.append(memory.memory_content)

    return "\n\n".join(parts)
