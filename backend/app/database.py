"""Database utilities for Supabase integration."""

from datetime import datetime, timezone
from typing import Annotated

from fastapi import Depends

from supabase import Client, create_client

from .config import Settings, get_settings

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string, the format stored in every timestamp column."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value) -> datetime | None:
    """Parse a timestamp column; naive values are taken as UTC."""
    if not value:
        return None
    if isinstance(value, str):
        from dateutil.parser import parse
        value = parse(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# Table Names
# =============================================================================

USERS_TABLE = "user_accounts"
PROJECTS_TABLE = "project_projects"
PROJECT_MEMBERS_TABLE = "project_members"

USER_MEMORIES_TABLE = "user_memories"
PROJECT_MEMORIES_TABLE = "project_memories"
DOMAIN_MEMORIES_TABLE = "domain_memories"
MEMORY_UPDATES_TABLE = "memory_updates"

LCA_MATERIALS_TABLE = "lca_materials"
LCA_PROJECTS_TABLE = "lca_projects"
LCA_ELEMENTS_TABLE = "lca_elements"
LCA_LAYERS_TABLE = "lca_layers"
LCA_REFERENCE_VALUES_TABLE = "lca_reference_values"


# =============================================================================
# User Operations
# =============================================================================

async def get_user(db: Client, user_id: str) -> dict | None:
    """Get a user account by ID."""
    result = db.table(USERS_TABLE).select("*").eq("id", user_id).execute()
    return result.data[0] if result.data else None


async def get_user_by_email(db: Client, email: str) -> dict | None:
    """Get a user account by email address (case-insensitive)."""
    result = db.table(USERS_TABLE).select("*").eq("email", email.strip().lower()).limit(1).execute()
    return result.data[0] if result.data else None


async def update_user_password(db: Client, user_id: str, password_hash: str) -> None:
    """Store a new password hash for a user."""
    db.table(USERS_TABLE).update(
        {"password_hash": password_hash, "updated_at": utc_now()}
    ).eq("id", user_id).execute()


# =============================================================================
# Project Operations
# =============================================================================

# Roles that may modify project data (memory, settings).
# "owner" and "editor" are accepted alongside the member-management roles.
EDIT_ROLES = {"creator", "owner", "admin", "member", "editor"}
MANAGE_ROLES = {"creator", "owner", "admin"}

DEFAULT_PERMISSIONS = {
    "creator": {
        "can_edit": True,
        "can_delete": True,
        "can_manage_members": True,
        "can_manage_files": True,
        "can_view_analytics": True,
    },
    "admin": {
        "can_edit": True,
        "can_delete": False,
        "can_manage_members": True,
        "can_manage_files": True,
        "can_view_analytics": True,
    },
    "member": {
        "can_edit": True,
        "can_delete": False,
        "can_manage_members": False,
        "can_manage_files": True,
        "can_view_analytics": True,
    },
    "viewer": {
        "can_edit": False,
        "can_delete": False,
        "can_manage_members": False,
        "can_manage_files": False,
        "can_view_analytics": True,
    },
}


async def get_project(db: Client, project_id: str) -> dict | None:
    """Get a project that has not been deleted."""
    result = (
        db.table(PROJECTS_TABLE)
        .select("*")
        .eq("id", project_id)
        .is_("deleted_at", "null")
        .execute()
    )
    return result.data[0] if result.data else None


async def create_project(
    db: Client,
    name: str,
    created_by: str,
    org_id: str | None = None,
    description: str | None = None,
) -> dict:
    """Create a project and register its creator as a member."""
    now = utc_now()
    result = db.table(PROJECTS_TABLE).insert({
        "name": name,
        "description": description,
        "org_id": org_id,
        "created_by": created_by,
        "created_at": now,
        "updated_at": now,
    }).execute()
    project = result.data[0]
    await add_project_member(db, project["id"], created_by, "creator")
    return project


async def list_user_projects(db: Client, user_id: str) -> list[dict]:
    """List active projects the user is a member of, newest first."""
    memberships = (
        db.table(PROJECT_MEMBERS_TABLE)
        .select("project_id, role")
        .eq("user_id", user_id)
        .is_("left_at", "null")
        .execute()
    )
    if not memberships.data:
        return []
    roles = {m["project_id"]: m["role"] for m in memberships.data}
    result = (
        db.table(PROJECTS_TABLE)
        .select("*")
        .in_("id", list(roles))
        .is_("deleted_at", "null")
        .order("created_at", desc=True)
        .execute()
    )
    return [{**p, "role": roles.get(p["id"])} for p in result.data or []]


async def get_project_member(db: Client, project_id: str, user_id: str) -> dict | None:
    """Get an active membership row."""
    result = (
        db.table(PROJECT_MEMBERS_TABLE)
        .select("*")
        .eq("project_id", project_id)
        .eq("user_id", user_id)
        .is_("left_at", "null")
        .execute()
    )
    return result.data[0] if result.data else None


async def check_project_access(db: Client, project_id: str, user_id: str) -> tuple[bool, bool]:
    """Return (has_access, can_edit) for a user on a project."""
    member = await get_project_member(db, project_id, user_id)
    if not member:
        return False, False
    return True, member.get("role") in EDIT_ROLES


async def is_project_admin(db: Client, project_id: str, user_id: str) -> bool:
    """Check whether the user may manage members of a project."""
    member = await get_project_member(db, project_id, user_id)
    return bool(member) and member.get("role") in MANAGE_ROLES


async def list_project_members(db: Client, project_id: str) -> list[dict]:
    """List active members with their user details."""
    result = (
        db.table(PROJECT_MEMBERS_TABLE)
        .select("*")
        .eq("project_id", project_id)
        .is_("left_at", "null")
        .order("joined_at")
        .execute()
    )
    members = []
    for row in result.data or []:
        user = await get_user(db, row["user_id"])
        members.append({
            **row,
            "user_name": user.get("name") if user else None,
            "user_email": user.get("email") if user else None,
        })
    return members


async def add_project_member(
    db: Client,
    project_id: str,
    user_id: str,
    role: str = "member",
    permissions: dict | None = None,
    invited_by: str | None = None,
) -> dict:
    """Add a member to a project with role-based default permissions."""
    data = {
        "project_id": project_id,
        "user_id": user_id,
        "role": role,
        "permissions": permissions or DEFAULT_PERMISSIONS.get(role, DEFAULT_PERMISSIONS["member"]),
        "invited_by_user_id": invited_by,
        "joined_at": utc_now(),
        "left_at": None,
    }
    result = db.table(PROJECT_MEMBERS_TABLE).insert(data).execute()
    return result.data[0] if result.data else data


async def update_project_member(
    db: Client,
    project_id: str,
    user_id: str,
    updates: dict,
) -> dict | None:
    """Update an active member's role or permissions."""
    result = (
        db.table(PROJECT_MEMBERS_TABLE)
        .update(updates)
        .eq("project_id", project_id)
        .eq("user_id", user_id)
        .is_("left_at", "null")
        .execute()
    )
    return result.data[0] if result.data else None


async def count_project_creators(db: Client, project_id: str) -> int:
    """Count active members holding the creator role."""
    result = (
        db.table(PROJECT_MEMBERS_TABLE)
        .select("id")
        .eq("project_id", project_id)
        .eq("role", "creator")
        .is_("left_at", "null")
        .execute()
    )
    return len(result.data or [])


async def remove_project_member(db: Client, project_id: str, user_id: str) -> None:
    """Soft-delete a membership by stamping left_at."""
    db.table(PROJECT_MEMBERS_TABLE).update({"left_at": utc_now()}).eq(
        "project_id", project_id
    ).eq("user_id", user_id).execute()
