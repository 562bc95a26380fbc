"""Pydantic models for API requests and responses."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .memory.types import ConversationMessage

# =============================================================================
# Auth Models
# =============================================================================

class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)


class UserInfo(BaseModel):
    user_id: str
    email: str | None = None
    name: str | None = None
    role: str
    org_id: str | None = None


# =============================================================================
# Memory Models
# =============================================================================

class PreferenceInput(BaseModel):
    """Edit a preference by ``id`` or add one by ``key``."""
    id: str | None = None
    key: str | None = None
    value: str = Field(..., min_length=1)


class PersonalMemoryUpdate(BaseModel):
    identity: dict[str, str | None] | None = None
    preference: PreferenceInput | None = None


class AddContextInput(BaseModel):
    category: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)


class UpdateContextInput(BaseModel):
    context_id: str
    content: str = Field(..., min_length=1)


class ProjectLocation(BaseModel):
    address: str | None = None
    coordinates: tuple[float, float] | None = None


class HardValues(BaseModel):
    """Structured project facts. Unknown keys are kept as-is."""
    model_config = ConfigDict(extra="allow")

    bvo: float | None = Field(None, ge=0)
    go: float | None = Field(None, ge=0)
    units: int | None = Field(None, ge=0)
    target_groups: list[str] | None = None
    phase: str | None = None
    location: ProjectLocation | None = None
    mpg_target: float | None = Field(None, ge=0)
    budget: float | None = Field(None, ge=0)
    building_type: str | None = None


class ProjectMemoryUpdate(BaseModel):
    hard_values: HardValues | None = None
    add_context: AddContextInput | None = None
    update_context: UpdateContextInput | None = None
    summary: str | None = None


class KnowledgeInput(BaseModel):
    category: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)


class UpdateKnowledgeInput(BaseModel):
    knowledge_id: str
    updates: dict[str, str]


class DomainMemoryUpdate(BaseModel):
    add_knowledge: KnowledgeInput | None = None
    update_knowledge: UpdateKnowledgeInput | None = None


class AnalyzeRequest(BaseModel):
    """Run preference extraction on a conversation.

    With ``apply`` the extracted items are written to memory; otherwise
    they are only returned.
    """
    messages: list[ConversationMessage] = Field(..., min_length=1)
    chat_id: str = "manual"
    project_id: str | None = None
    locale: Literal["en", "nl"] = "en"
    apply: bool = False


# =============================================================================
# Chat Models
# =============================================================================

class ChatRequest(BaseModel):
    messages: list[ConversationMessage] = Field(..., min_length=1)
    chat_id: str
    project_id: str | None = None
    locale: Literal["en", "nl"] = "en"
    system_prompt: str | None = None


class ChatResponseBody(BaseModel):
    content: str
    model_id: str
    usage: dict[str, int] | None = None
    memory_tokens: int = 0
    memory_included: dict[str, bool] = {}
    analysis_queued: bool = False


# =============================================================================
# Project Models
# =============================================================================

ProjectRole = Literal["creator", "owner", "admin", "member", "editor", "viewer"]


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None


class MemberAdd(BaseModel):
    user_id: str
    role: ProjectRole = "member"
    permissions: dict[str, bool] | None = None


class MemberUpdate(BaseModel):
    role: ProjectRole | None = None
    permissions: dict[str, bool] | None = None


# =============================================================================
# LCA Models
# =============================================================================

class MaterialCreate(BaseModel):
    name_nl: str = Field(..., min_length=1)
    name_en: str | None = None
    name_de: str | None = None
    category: str
    subcategory: str | None = None
    declared_unit: str = "1 kg"
    conversion_to_kg: float = 1.0
    density: float | None = None
    bulk_density: float | None = None
    gwp_a1_a3: float
    gwp_a4: float | None = None
    gwp_a5: float | None = None
    gwp_c1: float | None = None
    gwp_c2: float | None = None
    gwp_c3: float | None = None
    gwp_c4: float | None = None
    gwp_d: float | None = None
    reference_service_life: int | None = None
    transport_distance: float | None = None
    transport_mode: str | None = None
    is_public: bool = False


class LCAProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    project_number: str | None = None
    gross_floor_area: float = Field(..., gt=0)
    building_type: str | None = None
    construction_system: str | None = None
    floors: int | None = None
    study_period: int = Field(75, gt=0)
    location: str | None = None
    energy_label: str | None = None
    annual_gas_use: float | None = None
    annual_electricity: float | None = None
    is_public: bool = False


class LCAProjectUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    project_number: str | None = None
    gross_floor_area: float | None = Field(None, gt=0)
    building_type: str | None = None
    construction_system: str | None = None
    floors: int | None = None
    study_period: int | None = Field(None, gt=0)
    location: str | None = None
    energy_label: str | None = None
    annual_gas_use: float | None = None
    annual_electricity: float | None = None
    is_public: bool | None = None


class ElementCreate(BaseModel):
    name: str = Field(..., min_length=1)
    category: str
    quantity: float = Field(..., ge=0)
    quantity_unit: str = "m2"
    sfb_code: str | None = None
    description: str | None = None
    notes: str | None = None


class ElementUpdate(BaseModel):
    name: str | None = Field(None, min_length=1)
    category: str | None = None
    quantity: float | None = Field(None, ge=0)
    quantity_unit: str | None = None
    sfb_code: str | None = None
    description: str | None = None
    notes: str | None = None


class LayerCreate(BaseModel):
    material_id: str
    thickness: float = Field(..., ge=0)
    coverage: float = Field(1.0, ge=0, le=1)
    position: int | None = Field(None, ge=1)
    custom_lifespan: float | None = Field(None, gt=0)
    custom_transport_km: float | None = Field(None, ge=0)
    custom_eol_scenario: str | None = None


class LayerUpdate(BaseModel):
    material_id: str | None = None
    thickness: float | None = Field(None, ge=0)
    coverage: float | None = Field(None, ge=0, le=1)
    custom_lifespan: float | None = Field(None, gt=0)
    custom_transport_km: float | None = Field(None, ge=0)
    custom_eol_scenario: str | None = None


class LayerReorder(BaseModel):
    layer_ids: list[str] = Field(..., min_length=1)
