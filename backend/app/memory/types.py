"""Data types for the three memory tiers and their update history."""

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MemorySource = Literal[
    "chat",
    "panel",
    "document",
    "location",
    "lca",
    "task",
    "manual",
    "admin",
    "system",
]

MemoryUpdateType = Literal[
    "learned",
    "reinforced",
    "contradicted",
    "user_edit",
    "user_delete",
    "admin_edit",
    "expired",
]

MemoryType = Literal["personal", "project", "domain"]

PreferenceAction = Literal["created", "reinforced", "contradicted", "updated"]


def new_id() -> str:
    """Generate an ID for an entry stored inside a JSON memory column."""
    return uuid.uuid4().hex[:16]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Personal memory
# =============================================================================

class UserIdentity(BaseModel):
    """Who the user is, as far as the assistant has learned."""
    name: str | None = None
    position: str | None = None
    organization: str | None = None


class LearnedPreference(BaseModel):
    """A single preference with confidence tracking."""
    id: str = Field(default_factory=new_id)
    key: str
    value: str
    confidence: float = Field(ge=0.0, le=1.0)
    reinforcements: int = 0
    contradictions: int = 0
    learned_from: str = "chat"
    learned_from_text: str | None = None
    learned_at: datetime = Field(default_factory=_now)
    last_reinforced_at: datetime | None = None


class PersonalMemory(BaseModel):
    """Per-user memory: identity, scored preferences and legacy free text."""
    user_id: str
    identity: UserIdentity = Field(default_factory=UserIdentity)
    memory_content: str = ""
    preferences: list[LearnedPreference] = []
    token_estimate: int = 0
    last_synthesized_at: datetime | None = None


class PreferenceUpdateResult(BaseModel):
    """Outcome of applying one observed preference."""
    action: PreferenceAction
    preference: LearnedPreference
    previous_value: str | None = None
    previous_confidence: float | None = None


# =============================================================================
# Project memory
# =============================================================================

class SoftContext(BaseModel):
    """Learned, scored context about a project."""
    id: str = Field(default_factory=new_id)
    category: str
    content: str
    source: str = "chat"
    source_ref: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    learned_at: datetime = Field(default_factory=_now)


class SynthesisSource(BaseModel):
    """Where a piece of project memory came from."""
    type: str
    ref: str
    contributed_at: datetime = Field(default_factory=_now)


class ProjectMemory(BaseModel):
    """Per-project memory: hard values, soft context and a summary."""
    project_id: str
    hard_values: dict[str, Any] = {}
    soft_context: list[SoftContext] = []
    memory_content: str = ""
    project_summary: str | None = None
    synthesis_sources: list[SynthesisSource] = []
    token_estimate: int = 0
    last_synthesized_at: datetime | None = None


# =============================================================================
# Domain memory
# =============================================================================

class DomainKnowledge(BaseModel):
    """Admin-entered organization knowledge. Not scored."""
    id: str = Field(default_factory=new_id)
    category: str
    title: str
    content: str
    added_by: str | None = None
    added_at: datetime = Field(default_factory=_now)


class DomainPattern(BaseModel):
    """A cross-project pattern reinforced each time another project shows it."""
    id: str = Field(default_factory=new_id)
    pattern: str
    evidence: str = ""
    project_count: int = 1
    confidence: float = Field(ge=0.0, le=1.0)
    learned_at: datetime = Field(default_factory=_now)


class DomainMemory(BaseModel):
    """Per-organization memory."""
    id: str
    org_id: str
    explicit_knowledge: list[DomainKnowledge] = []
    learned_patterns: list[DomainPattern] = []
    token_estimate: int = 0
    last_synthesized_at: datetime | None = None
    last_updated_by: str | None = None


# =============================================================================
# Conversations
# =============================================================================

class ConversationMessage(BaseModel):
    """A chat message as seen by the assistant and the preference analyzer."""
    role: Literal["system", "user", "assistant"]
    content: str


# =============================================================================
# History
# =============================================================================

class MemoryUpdate(BaseModel):
    """One row of the memory_updates audit log."""
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    memory_type: MemoryType
    memory_id: str
    update_type: MemoryUpdateType
    field_path: str | None = None
    preference_key: str | None = None
    old_value: Any = None
    new_value: Any = None
    old_confidence: float | None = None
    new_confidence: float | None = None
    source: str
    source_ref: str | None = None
    source_text: str | None = None
    updated_by: str | None = None
    created_at: datetime | None = None
