"""Memory routes: personal, project and domain tiers, plus manual analysis.

Every response is wrapped as ``{"success": true, "data": ...}``.
"""

from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request, status

from ..auth import AdminUser, CurrentUser
from ..config import get_settings
from ..database import Database, check_project_access
from ..logging_config import get_logger
from ..memory.analyzer import AnalysisParams, analyze_conversation, manual_preference_analysis
from ..memory.domain import (
    add_explicit_knowledge,
    format_domain_memory_for_prompt,
    get_domain_memory,
    get_domain_memory_history,
    get_or_create_domain_memory,
    remove_explicit_knowledge,
    remove_learned_pattern,
    update_explicit_knowledge,
)
from ..memory.injector import get_memory_prompt_section
from ..memory.personal import (
    add_preference_manually,
    clear_personal_memory,
    delete_preference,
    edit_preference,
    format_personal_memory_for_prompt,
    get_personal_memory,
    get_personal_memory_history,
    update_identity,
)
from ..memory.project import (
    add_soft_context,
    clear_project_memory,
    format_project_memory_for_prompt,
    get_or_create_project_memory,
    get_project_memory,
    get_project_memory_history,
    remove_hard_value,
    remove_soft_context,
    update_hard_values,
    update_project_summary,
    update_soft_context,
)
from ..models import AnalyzeRequest, DomainMemoryUpdate, PersonalMemoryUpdate, ProjectMemoryUpdate
from ..rate_limit import ANALYZE_RATE_LIMIT, get_user_key, limiter

logger = get_logger("archidesk.memory.routes")
router = APIRouter(prefix="/memory", tags=["memory"])

HistoryLimit = Query(20, ge=1, le=100)


def _ok(data=None, message: str | None = None) -> dict:
    body: dict = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return body


def _dump(items) -> list[dict]:
    return [item.model_dump(mode="json") for item in items]


async def _require_project_access(db, project_id: str, user_id: str, edit: bool = False) -> None:
    has_access, can_edit = await check_project_access(db, project_id, user_id)
    if not has_access:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    if edit and not can_edit:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Edit permission required")


def _require_org(user, org_id: str | None) -> str:
    """Admins only manage their own organization."""
    if org_id and org_id != user.org_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    if not user.org_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No organization found")
    return user.org_id


# =============================================================================
# Combined context
# =============================================================================

@router.get("/context")
async def get_memory_context(
    user: CurrentUser,
    db: Database,
    project_id: str | None = None,
    org_id: str | None = None,
    locale: Literal["en", "nl"] = "en",
):
    """The memory section that would be injected into a system prompt."""
    if org_id and org_id != user.org_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    if project_id:
        await _require_project_access(db, project_id, user.user_id)

    result = await get_memory_prompt_section(
        db,
        user.user_id,
        project_id=project_id,
        org_id=user.org_id,
        locale=locale,
        max_tokens=get_settings().memory_max_tokens,
    )
    return _ok({
        "prompt_section": result.prompt_section if result.included.any else "",
        "token_estimate": result.token_estimate,
        "included": result.included.model_dump(),
    })


# =============================================================================
# Personal memory
# =============================================================================

def _personal_data(memory, include_text: bool = True) -> dict:
    data = {
        "identity": memory.identity.model_dump(),
        "preferences": _dump(memory.preferences),
        "memory_content": memory.memory_content,
        "token_estimate": memory.token_estimate,
        "last_synthesized_at": (
            memory.last_synthesized_at.isoformat() if memory.last_synthesized_at else None
        ),
    }
    if include_text:
        data["formatted_text"] = format_personal_memory_for_prompt(memory)
    return data


@router.get("/personal")
async def read_personal_memory(user: CurrentUser, db: Database):
    memory = await get_personal_memory(db, user.user_id)
    return _ok(_personal_data(memory))


@router.put("/personal")
async def write_personal_memory(body: PersonalMemoryUpdate, user: CurrentUser, db: Database):
    if body.identity:
        await update_identity(db, user.user_id, body.identity)

    if body.preference:
        pref = body.preference
        if pref.id:
            updated = await edit_preference(db, user.user_id, pref.id, pref.value)
            if updated is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Preference not found")
        elif pref.key:
            await add_preference_manually(db, user.user_id, pref.key, pref.value)
        else:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Preference requires an id to edit or a key to add",
            )

    memory = await get_personal_memory(db, user.user_id)
    return _ok(_personal_data(memory, include_text=False))


@router.delete("/personal")
async def delete_personal_memory(
    user: CurrentUser,
    db: Database,
    preference_id: str | None = None,
    clear_all: bool = False,
):
    if clear_all:
        await clear_personal_memory(db, user.user_id)
        return _ok(message="All personal memory cleared")

    if preference_id:
        if not await delete_preference(db, user.user_id, preference_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Preference not found")
        return _ok(message="Preference deleted")

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Specify preference_id or clear_all=true",
    )


@router.get("/personal/history")
async def personal_history(user: CurrentUser, db: Database, limit: int = HistoryLimit):
    return _ok(_dump(await get_personal_memory_history(db, user.user_id, limit)))


# =============================================================================
# Project memory
# =============================================================================

def _project_data(project_id: str, memory) -> dict:
    if memory is None:
        return {
            "project_id": project_id,
            "hard_values": {},
            "soft_context": [],
            "summary": None,
            "token_estimate": 0,
            "formatted_text": "",
        }
    return {
        "project_id": memory.project_id,
        "hard_values": memory.hard_values,
        "soft_context": _dump(memory.soft_context),
        "summary": memory.project_summary,
        "token_estimate": memory.token_estimate,
        "last_synthesized_at": (
            memory.last_synthesized_at.isoformat() if memory.last_synthesized_at else None
        ),
        "formatted_text": format_project_memory_for_prompt(memory),
    }


@router.get("/project/{project_id}")
async def read_project_memory(project_id: str, user: CurrentUser, db: Database):
    await _require_project_access(db, project_id, user.user_id)
    return _ok(_project_data(project_id, await get_project_memory(db, project_id)))


@router.put("/project/{project_id}")
async def write_project_memory(
    project_id: str,
    body: ProjectMemoryUpdate,
    user: CurrentUser,
    db: Database,
):
    await _require_project_access(db, project_id, user.user_id, edit=True)
    await get_or_create_project_memory(db, project_id)

    hard_values = body.hard_values.model_dump(mode="json", exclude_none=True) if body.hard_values else {}
    if hard_values:
        await update_hard_values(db, project_id, hard_values, "manual", updated_by=user.user_id)

    if body.add_context:
        await add_soft_context(
            db,
            project_id,
            body.add_context.category,
            body.add_context.content,
            source="manual",
            updated_by=user.user_id,
        )

    if body.update_context:
        updated = await update_soft_context(
            db,
            project_id,
            body.update_context.context_id,
            body.update_context.content,
            updated_by=user.user_id,
        )
        if updated is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Context not found")

    if body.summary is not None:
        await update_project_summary(db, project_id, body.summary)

    return _ok(_project_data(project_id, await get_project_memory(db, project_id)))


@router.delete("/project/{project_id}")
async def delete_project_memory_items(
    project_id: str,
    user: CurrentUser,
    db: Database,
    context_id: str | None = None,
    hard_value_key: str | None = None,
    clear_all: bool = False,
):
    await _require_project_access(db, project_id, user.user_id, edit=True)

    if clear_all:
        await clear_project_memory(db, project_id)
        return _ok(message="Project memory cleared")

    if context_id:
        if not await remove_soft_context(db, project_id, context_id, updated_by=user.user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Context not found")
        return _ok(message="Context removed")

    if hard_value_key:
        if not await remove_hard_value(db, project_id, hard_value_key, updated_by=user.user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hard value not found")
        return _ok(message="Hard value removed")

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Specify context_id, hard_value_key, or clear_all=true",
    )


@router.get("/project/{project_id}/history")
async def project_history(project_id: str, user: CurrentUser, db: Database, limit: int = HistoryLimit):
    await _require_project_access(db, project_id, user.user_id)
    return _ok(_dump(await get_project_memory_history(db, project_id, limit)))


# =============================================================================
# Domain memory (organization admins)
# =============================================================================

def _domain_data(org_id: str, memory) -> dict:
    if memory is None:
        return {
            "org_id": org_id,
            "explicit_knowledge": [],
            "learned_patterns": [],
            "token_estimate": 0,
            "formatted_text": "",
        }
    return {
        "org_id": memory.org_id,
        "explicit_knowledge": _dump(memory.explicit_knowledge),
        "learned_patterns": _dump(memory.learned_patterns),
        "token_estimate": memory.token_estimate,
        "last_synthesized_at": (
            memory.last_synthesized_at.isoformat() if memory.last_synthesized_at else None
        ),
        "formatted_text": format_domain_memory_for_prompt(memory),
    }


@router.get("/domain")
async def read_domain_memory(user: AdminUser, db: Database, org_id: str | None = None):
    org_id = _require_org(user, org_id)
    return _ok(_domain_data(org_id, await get_domain_memory(db, org_id)))


@router.put("/domain")
async def write_domain_memory(body: DomainMemoryUpdate, user: AdminUser, db: Database):
    org_id = _require_org(user, None)
    await get_or_create_domain_memory(db, org_id)

    if body.add_knowledge:
        await add_explicit_knowledge(
            db,
            org_id,
            body.add_knowledge.category,
            body.add_knowledge.title,
            body.add_knowledge.content,
            user.user_id,
        )

    if body.update_knowledge:
        updated = await update_explicit_knowledge(
            db,
            org_id,
            body.update_knowledge.knowledge_id,
            body.update_knowledge.updates,
            user.user_id,
        )
        if updated is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Knowledge not found")

    return _ok(_domain_data(org_id, await get_domain_memory(db, org_id)))


@router.delete("/domain")
async def delete_domain_memory_items(
    user: AdminUser,
    db: Database,
    knowledge_id: str | None = None,
    pattern_id: str | None = None,
):
    org_id = _require_org(user, None)

    if knowledge_id:
        if not await remove_explicit_knowledge(db, org_id, knowledge_id, user.user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Knowledge not found")
        return _ok(message="Knowledge removed")

    if pattern_id:
        if not await remove_learned_pattern(db, org_id, pattern_id, user.user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pattern not found")
        return _ok(message="Pattern removed")

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Specify knowledge_id or pattern_id",
    )


@router.get("/domain/history")
async def domain_history(user: AdminUser, db: Database, limit: int = HistoryLimit):
    org_id = _require_org(user, None)
    return _ok(_dump(await get_domain_memory_history(db, org_id, limit)))


# =============================================================================
# Manual analysis
# =============================================================================

@router.post("/analyze")
@limiter.limit(ANALYZE_RATE_LIMIT, key_func=get_user_key)
async def analyze(request: Request, body: AnalyzeRequest, user: CurrentUser, db: Database):
    """Extract preferences and facts from a conversation on demand."""
    if body.project_id:
        await _require_project_access(db, body.project_id, user.user_id, edit=body.apply)

    params = AnalysisParams(
        user_id=user.user_id,
        chat_id=body.chat_id,
        project_id=body.project_id,
        org_id=user.org_id,
        messages=body.messages,
        locale=body.locale,
    )
    if body.apply:
        extracted = await analyze_conversation(db, params)
    else:
        extracted = await manual_preference_analysis(params)

    return _ok({
        "applied": body.apply and extracted is not None,
        "extraction": extracted.model_dump() if extracted else None,
    })
