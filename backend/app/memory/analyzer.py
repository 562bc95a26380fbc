"""Background preference analysis.

Every few chat messages the recent conversation is sent to a cheap model,
which returns preferences, identity, project facts and cross-project
patterns as JSON. The extracted items are fed into the memory stores,
where the confidence rules decide what sticks.
"""

import asyncio
import json
import re
from typing import Any

from fastapi import BackgroundTasks
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from supabase import Client

from ..llm import ChatMessage, ChatModel, get_analyzer_model
from ..logging_config import get_logger
from .domain import add_learned_pattern
from .personal import update_identity, update_preference
from .project import add_soft_context
from .types import ConversationMessage

logger = get_logger("archidesk.memory.analyzer")

RECENT_MESSAGE_COUNT = 10
MIN_MESSAGES_FOR_ANALYSIS = 3
ANALYZE_EVERY_N_MESSAGES = 5
EXTRACTION_TEMPERATURE = 0.3
EXTRACTION_MAX_TOKENS = 1500

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

# Keep strong references so scheduled tasks are not garbage collected mid-run
_pending_tasks: set[asyncio.Task] = set()


class AnalysisParams(BaseModel):
    user_id: str
    chat_id: str
    project_id: str | None = None
    org_id: str | None = None
    messages: list[ConversationMessage]
    locale: str = "en"


class ExtractedPreference(BaseModel):
    key: str
    value: str
    is_explicit: bool
    source_text: str | None = None


class ExtractedProjectFact(BaseModel):
    category: str
    content: str
    source_text: str | None = None


class ExtractionResult(BaseModel):
    personal_preferences: list[ExtractedPreference] = []
    identity: dict[str, str] | None = None
    project_facts: list[ExtractedProjectFact] = []
    domain_patterns: list[str] = []


# =============================================================================
# Scheduling
# =============================================================================

def count_conversation_messages(messages: list[ConversationMessage]) -> int:
    return sum(1 for m in messages if m.role != "system")


def should_analyze(message_count: int) -> bool:
    if message_count < MIN_MESSAGES_FOR_ANALYSIS:
        logger.debug(f"Skipping analysis - only {message_count} messages")
        return False
    if message_count % ANALYZE_EVERY_N_MESSAGES != 0:
        logger.debug(f"Skipping analysis - {message_count} not a multiple of {ANALYZE_EVERY_N_MESSAGES}")
        return False
    return True


async def run_analysis_safely(db: Client, params: AnalysisParams, model: ChatModel | None = None) -> None:
    """Run ``analyze_conversation`` and log instead of raising."""
    try:
        await analyze_conversation(db, params, model)
    except Exception as e:
        logger.error(f"Background analysis failed for chat {params.chat_id}: {e}")


def queue_preference_analysis(
    db: Client,
    params: AnalysisParams,
    background_tasks: BackgroundTasks | None = None,
    model: ChatModel | None = None,
) -> bool:
    """Schedule analysis without waiting for it. Returns whether it was queued.

    Inside a request the work is handed to FastAPI's ``BackgroundTasks`` so it
    runs after the response is sent; otherwise it becomes an asyncio task on
    the running loop.
    """
    if not should_analyze(count_conversation_messages(params.messages)):
        return False

    if background_tasks is not None:
        background_tasks.add_task(run_analysis_safely, db, params, model)
    else:
        task = asyncio.get_running_loop().create_task(run_analysis_safely(db, params, model))
        _pending_tasks.add(task)
        task.add_done_callback(_pending_tasks.discard)
    logger.info(f"Queued preference analysis for user {params.user_id}, chat {params.chat_id}")
    return True


# =============================================================================
# Analysis
# =============================================================================

def _recent(messages: list[ConversationMessage]) -> list[ConversationMessage]:
    return [m for m in messages if m.role != "system"][-RECENT_MESSAGE_COUNT:]


async def analyze_conversation(
    db: Client,
    params: AnalysisParams,
    model: ChatModel | None = None,
) -> ExtractionResult | None:
    """Extract facts from the recent conversation and apply them to memory."""
    logger.info(f"Starting analysis for user {params.user_id}, chat {params.chat_id}")

    recent = _recent(params.messages)
    if not recent:
        return None

    extracted = await extract_from_conversation(recent, params.locale, model)
    if extracted is None:
        logger.info("No extractable content found")
        return None

    for pref in extracted.personal_preferences:
        await update_preference(
            db,
            params.user_id,
            pref.key,
            pref.value,
            source="chat",
            source_ref=params.chat_id,
            source_text=pref.source_text,
            is_explicit=pref.is_explicit,
        )

    if extracted.identity:
        await update_identity(db, params.user_id, extracted.identity)

    if params.project_id:
        for fact in extracted.project_facts:
            await add_soft_context(
                db,
                params.project_id,
                fact.category,
                fact.content,
                source="chat",
                source_ref=params.chat_id,
            )

    # Patterns only count as cross-project evidence when tied to a project
    if params.org_id and params.project_id:
        for pattern in extracted.domain_patterns:
            await add_learned_pattern(
                db,
                params.org_id,
                pattern,
                f"Observed in project conversation: {params.chat_id}",
                params.project_id,
            )

    logger.info(
        f"Analysis complete for chat {params.chat_id}: "
        f"prefs={len(extracted.personal_preferences)} facts={len(extracted.project_facts)} "
        f"patterns={len(extracted.domain_patterns)}"
    )
    return extracted


async def manual_preference_analysis(
    params: AnalysisParams,
    model: ChatModel | None = None,
) -> ExtractionResult | None:
    """Run extraction only; nothing is written to memory."""
    recent = _recent(params.messages)
    if not recent:
        return None
    return await extract_from_conversation(recent, params.locale, model)


# =============================================================================
# Extraction
# =============================================================================

def format_messages_for_analysis(messages: list[ConversationMessage]) -> str:
    return "\n\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in messages
    )


def get_extraction_prompt(conversation_text: str, locale: str = "en") -> str:
    if locale == "nl":
        intro = "Analyseer dit gesprek en extract de volgende informatie in JSON formaat:"
    else:
        intro = "Analyze this conversation and extract the following information in JSON format:"

    return f"""{intro}

1. **Personal Preferences**: Any preferences the user expresses about:
   - Writing/response style (formal, casual, concise, detailed)
   - Language preferences (technical terms, Dutch/English)
   - Data presentation preferences
   - Working patterns or habits

   For each preference, determine if it's EXPLICIT (user directly stated it) or IMPLICIT (inferred from behavior).

2. **Identity**: User's name or position if mentioned.

3. **Project Facts** (if discussing a specific project):
   - Client preferences
   - Design decisions and rationale
   - Constraints or requirements
   - Goals or objectives

4. **Domain Patterns**: General best practices or learnings that could apply to other projects.

CONVERSATION:
{conversation_text}

Respond ONLY with valid JSON in this exact format:
{{
  "personalPreferences": [
    {{
      "key": "preference_category",
      "value": "preference_value",
      "isExplicit": true/false,
      "sourceText": "relevant quote from conversation"
    }}
  ],
  "identity": {{
    "name": "user's name if mentioned",
    "position": "user's role/position if mentioned"
  }},
  "projectFacts": [
    {{
      "category": "client_preference|design_decision|constraint|goal",
      "content": "the fact",
      "sourceText": "relevant quote"
    }}
  ],
  "domainPatterns": [
    "general pattern or best practice"
  ]
}}

If nothing is found for a category, use empty arrays/null. Only include HIGH-CONFIDENCE extractions."""


async def extract_from_conversation(
    messages: list[ConversationMessage],
    locale: str = "en",
    model: ChatModel | None = None,
) -> ExtractionResult | None:
    conversation_text = format_messages_for_analysis(messages)
    if not conversation_text.strip():
        return None

    model = model or get_analyzer_model()
    if model is None:
        logger.warning("No LLM provider configured, skipping preference extraction")
        return None

    prompt = get_extraction_prompt(conversation_text, locale)
    try:
        response = await run_in_threadpool(
            model.generate,
            [ChatMessage(role="user", content=prompt)],
            temperature=EXTRACTION_TEMPERATURE,
            max_tokens=EXTRACTION_MAX_TOKENS,
        )
    except Exception as e:
        logger.error(f"Extraction failed: {e}")
        return None

    return parse_extraction_response(response.content)


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _text(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None


def parse_extraction_response(response_text: str) -> ExtractionResult | None:
    """Parse the model's JSON reply, dropping malformed entries."""
    match = _JSON_OBJECT.search(response_text or "")
    if not match:
        logger.warning("No JSON found in extraction response")
        return None

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse extraction response: {e}")
        return None
    if not isinstance(parsed, dict):
        return None

    preferences = []
    for p in _list(parsed.get("personalPreferences")):
        if not isinstance(p, dict):
            continue
        if p.get("key") and p.get("value") and isinstance(p.get("isExplicit"), bool):
            preferences.append(ExtractedPreference(
                key=str(p["key"]),
                value=str(p["value"]),
                is_explicit=p["isExplicit"],
                source_text=_text(p.get("sourceText")),
            ))

    identity = None
    raw_identity = parsed.get("identity")
    if isinstance(raw_identity, dict):
        name = _text(raw_identity.get("name"))
        position = _text(raw_identity.get("position"))
        if name or position:
            identity = {k: v for k, v in (("name", name), ("position", position)) if v}

    facts = []
    for f in _list(parsed.get("projectFacts")):
        if isinstance(f, dict) and f.get("category") and f.get("content"):
            facts.append(ExtractedProjectFact(
                category=str(f["category"]),
                content=str(f["content"]),
                source_text=_text(f.get("sourceText")),
            ))

    patterns = [
        p.strip() for p in _list(parsed.get("domainPatterns")) if isinstance(p, str) and p.strip()
    ]

    return ExtractionResult(
        personal_preferences=preferences,
        identity=identity,
        project_facts=facts,
        domain_patterns=patterns,
    )
