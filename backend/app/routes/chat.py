"""Chat route: memory-enhanced completions."""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from ..auth import CurrentUser
from ..config import Settings, get_settings
from ..database import Database, check_project_access
from ..llm import ChatMessage, LLMError, get_chat_model
from ..logging_config import get_logger
from ..memory.analyzer import AnalysisParams, queue_preference_analysis
from ..memory.injector import enhance_prompt_with_memory
from ..models import ChatRequest, ChatResponseBody
from ..rate_limit import CHAT_RATE_LIMIT, get_user_key, limiter

logger = get_logger("archidesk.chat")
router = APIRouter(tags=["chat"])

DEFAULT_SYSTEM_PROMPTS = {
    "en": "You are an assistant for architects and real-estate developers.",
    "nl": "Je bent een assistent voor architecten en vastgoedontwikkelaars.",
}


@router.post("/chat", response_model=ChatResponseBody)
@limiter.limit(CHAT_RATE_LIMIT, key_func=get_user_key)
async def chat(
    request: Request,
    body: ChatRequest,
    background_tasks: BackgroundTasks,
    user: CurrentUser,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Answer the conversation with the user's memory in the system prompt.

    Every few messages the conversation is queued for preference analysis,
    which runs after the response has been sent.
    """
    if body.project_id:
        has_access, _ = await check_project_access(db, body.project_id, user.user_id)
        if not has_access:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    model = get_chat_model(settings)
    if model is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No LLM provider configured",
        )

    base_prompt = body.system_prompt or DEFAULT_SYSTEM_PROMPTS[body.locale]
    system_prompt, memory = await enhance_prompt_with_memory(
        db,
        base_prompt,
        user.user_id,
        project_id=body.project_id,
        org_id=user.org_id,
        locale=body.locale,
        max_tokens=settings.memory_max_tokens,
    )

    messages = [
        ChatMessage(role=m.role, content=m.content) for m in body.messages if m.role != "system"
    ]
    try:
        response = await run_in_threadpool(model.generate, messages, system=system_prompt)
    except LLMError as e:
        logger.error(f"CHAT | {user.user_id} | {body.chat_id} | {e.error_class} | {e}")
        code = (
            status.HTTP_429_TOO_MANY_REQUESTS
            if e.error_class == "rate_limit"
            else status.HTTP_502_BAD_GATEWAY
        )
        raise HTTPException(status_code=code, detail=f"LLM provider error: {e.error_class}")

    queued = False
    if settings.memory_analysis_enabled:
        # The assistant reply counts towards the conversation length
        conversation = [*body.messages, {"role": "assistant", "content": response.content}]
        queued = queue_preference_analysis(
            db,
            AnalysisParams(
                user_id=user.user_id,
                chat_id=body.chat_id,
                project_id=body.project_id,
                org_id=user.org_id,
                messages=conversation,
                locale=body.locale,
            ),
            background_tasks,
        )

    return ChatResponseBody(
        content=response.content,
        model_id=response.model_id or model.model_id,
        usage=response.usage or None,
        memory_tokens=memory.token_estimate if memory.included.any else 0,
        memory_included=memory.included.model_dump(),
        analysis_queued=queued,
    )
