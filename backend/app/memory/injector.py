"""Combine the three memory tiers into a system-prompt section.

The token estimate is informational only. When the combined text goes
over ``max_tokens`` a warning is logged and everything is still included.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel
from supabase import Client

from ..logging_config import get_logger
from .domain import format_domain_memory_for_prompt, get_domain_memory
from .personal import format_personal_memory_for_prompt, get_personal_memory
from .project import format_project_memory_for_prompt, get_project_memory
from .scoring import estimate_tokens
from .types import DomainMemory, PersonalMemory, ProjectMemory

logger = get_logger("archidesk.memory.injector")

DEFAULT_MAX_TOKENS = 1500
SYNTHESIZE_EVERY_N_MESSAGES = 5
MIN_MESSAGES_FOR_SYNTHESIS = 3
SYNTHESIS_STALE_HOURS = 24

Locale = Literal["en", "nl"]

_HEADERS = {
    "en": {
        "main": "## Context about this user and project",
        "personal": "### About the user",
        "project": "### About this project",
        "domain": "### Organization knowledge",
    },
    "nl": {
        "main": "## Context over deze gebruiker en dit project",
        "personal": "### Over de gebruiker",
        "project": "### Over dit project",
        "domain": "### Organisatiekennis",
    },
}

_INSTRUCTIONS = {
    "en": (
        "\nIMPORTANT about the above context:\n"
        "- Use this information naturally, don't explicitly mention that you \"remember\" these things\n"
        "- Apply preferences without calling attention to them\n"
        "- Reference project facts when relevant\n"
        "- Never add made-up information"
    ),
    "nl": (
        "\nBELANGRIJK over bovenstaande context:\n"
        "- Gebruik deze informatie natuurlijk, noem niet expliciet dat je dit \"onthoudt\"\n"
        "- Pas voorkeuren toe zonder er aandacht op te vestigen\n"
        "- Verwijs naar projectfeiten wanneer relevant\n"
        "- Nooit verzonnen informatie toevoegen"
    ),
}


class CombinedMemory(BaseModel):
    personal: PersonalMemory | None = None
    project: ProjectMemory | None = None
    domain: DomainMemory | None = None


class IncludedTiers(BaseModel):
    personal: bool = False
    project: bool = False
    domain: bool = False

    @property
    def any(self) -> bool:
        return self.personal or self.project or self.domain


class MemoryInjectionResult(BaseModel):
    prompt_section: str
    token_estimate: int
    included: IncludedTiers
    memories: CombinedMemory


async def get_combined_memory_context(
    db: Client,
    user_id: str,
    project_id: str | None = None,
    org_id: str | None = None,
) -> CombinedMemory:
    """Load every tier that applies to this request."""
    return CombinedMemory(
        personal=await get_personal_memory(db, user_id),
        project=await get_project_memory(db, project_id) if project_id else None,
        domain=await get_domain_memory(db, org_id) if org_id else None,
    )


def build_memory_prompt_section(
    memories: CombinedMemory,
    locale: Locale = "en",
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> MemoryInjectionResult:
    """Format loaded memories into a prompt section."""
    headers = _HEADERS.get(locale, _HEADERS["en"])
    sections: dict[str, str] = {}

    # A user with only an identity is not worth a section of its own
    if memories.personal and memories.personal.preferences:
        text = format_personal_memory_for_prompt(memories.personal)
        if text.strip():
            sections["personal"] = text

    if memories.project:
        text = format_project_memory_for_prompt(memories.project)
        if text.strip():
            sections["project"] = text

    if memories.domain:
        text = format_domain_memory_for_prompt(memories.domain)
        if text.strip():
            sections["domain"] = text

    section_tokens = sum(estimate_tokens(text) for text in sections.values())
    if section_tokens > max_tokens:
        logger.warning(
            f"Total memory tokens ({section_tokens}) exceeds limit ({max_tokens}), including everything"
        )

    parts = [headers["main"]]
    for tier in ("personal", "project", "domain"):
        if tier in sections:
            parts.append(f"{headers[tier]}\n{sections[tier]}")
    parts.append(_INSTRUCTIONS.get(locale, _INSTRUCTIONS["en"]))

    prompt_section = "\n\n".join(parts)
    return MemoryInjectionResult(
        prompt_section=prompt_section,
        token_estimate=estimate_tokens(prompt_section),
        included=IncludedTiers(
            personal="personal" in sections,
            project="project" in sections,
            domain="domain" in sections,
        ),
        memories=memories,
    )


async def get_memory_prompt_section(
    db: Client,
    user_id: str,
    project_id: str | None = None,
    org_id: str | None = None,
    locale: Locale = "en",
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> MemoryInjectionResult:
    memories = await get_combined_memory_context(db, user_id, project_id, org_id)
    return build_memory_prompt_section(memories, locale, max_tokens)


async def enhance_prompt_with_memory(
    db: Client,
    base_prompt: str,
    user_id: str,
    project_id: str | None = None,
    org_id: str | None = None,
    locale: Locale = "en",
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> tuple[str, MemoryInjectionResult]:
    """Append the memory section to ``base_prompt`` when any tier has content."""
    result = await get_memory_prompt_section(db, user_id, project_id, org_id, locale, max_tokens)
    if not result.included.any:
        return base_prompt, result
    return f"{base_prompt}\n\n{result.prompt_section}", result


def should_synthesize_memory(
    message_count: int,
    last_synthesized_at: datetime | None,
    is_significant_event: bool = False,
) -> bool:
    """Decide whether background memory synthesis should run now."""
    if is_significant_event:
        return True

    if message_count > 0 and message_count % SYNTHESIZE_EVERY_N_MESSAGES == 0:
        return True

    if last_synthesized_at is None:
        return message_count >= MIN_MESSAGES_FOR_SYNTHESIS

    if last_synthesized_at.tzinfo is None:
        last_synthesized_at = last_synthesized_at.replace(tzinfo=timezone.utc)
    hours_since = (datetime.now(timezone.utc) - last_synthesized_at).total_seconds() / 3600
    return hours_since > SYNTHESIS_STALE_HOURS and message_count >= MIN_MESSAGES_FOR_SYNTHESIS
