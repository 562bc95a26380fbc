"""Project and membership routes."""

from fastapi import APIRouter, HTTPException, status

from ..auth import CurrentUser
from ..database import (
    DEFAULT_PERMISSIONS,
    Database,
    add_project_member,
    count_project_creators,
    create_project,
    get_project,
    get_project_member,
    get_user,
    is_project_admin,
    list_project_members,
    list_user_projects,
    remove_project_member,
    update_project_member,
)
from ..logging_config import get_logger
from ..models import MemberAdd, MemberUpdate, ProjectCreate

logger = get_logger("archidesk.projects")
router = APIRouter(prefix="/projects", tags=["projects"])


async def _get_member_or_403(db, project_id: str, user_id: str) -> dict:
    if await get_project(db, project_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    member = await get_project_member(db, project_id, user_id)
    if member is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return member


async def _require_manager(db, project_id: str, user_id: str) -> None:
    await _get_member_or_403(db, project_id, user_id)
    if not await is_project_admin(db, project_id, user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only project creators and admins can manage members",
        )


@router.get("")
async def list_projects(user: CurrentUser, db: Database):
    return {"projects": await list_user_projects(db, user.user_id)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create(body: ProjectCreate, user: CurrentUser, db: Database):
    project = await create_project(
        db,
        name=body.name,
        created_by=user.user_id,
        org_id=user.org_id,
        description=body.description,
    )
    logger.info(f"PROJECT | {project['id']} | created by {user.user_id}")
    return {**project, "role": "creator"}


@router.get("/{project_id}")
async def detail(project_id: str, user: CurrentUser, db: Database):
    member = await _get_member_or_403(db, project_id, user.user_id)
    project = await get_project(db, project_id)
    return {**project, "role": member.get("role"), "permissions": member.get("permissions")}


@router.get("/{project_id}/members")
async def members(project_id: str, user: CurrentUser, db: Database):
    await _get_member_or_403(db, project_id, user.user_id)
    return {"members": await list_project_members(db, project_id)}


@router.post("/{project_id}/members", status_code=status.HTTP_201_CREATED)
async def add_member(project_id: str, body: MemberAdd, user: CurrentUser, db: Database):
    await _require_manager(db, project_id, user.user_id)

    target = await get_user(db, body.user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if target.get("org_id") != user.org_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User must belong to the same organization",
        )
    if await get_project_member(db, project_id, body.user_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User is already a member of this project",
        )

    member = await add_project_member(
        db,
        project_id,
        body.user_id,
        role=body.role,
        permissions=body.permissions,
        invited_by=user.user_id,
    )
    logger.info(f"PROJECT | {project_id} | member added {body.user_id} as {body.role}")
    return member


@router.patch("/{project_id}/members/{member_user_id}")
async def update_member(
    project_id: str,
    member_user_id: str,
    body: MemberUpdate,
    user: CurrentUser,
    db: Database,
):
    await _require_manager(db, project_id, user.user_id)

    target = await get_project_member(db, project_id, member_user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")

    updates = {}
    if body.role is not None and body.role != target.get("role"):
        if target.get("role") == "creator" and await count_project_creators(db, project_id) <= 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot change the role of the last creator",
            )
        updates["role"] = body.role
        # A role change resets permissions unless new ones are given
        updates["permissions"] = DEFAULT_PERMISSIONS.get(body.role, DEFAULT_PERMISSIONS["member"])
    if body.permissions is not None:
        updates["permissions"] = body.permissions
    if not updates:
        return target

    updated = await update_project_member(db, project_id, member_user_id, updates)
    return updated or {**target, **updates}


@router.delete("/{project_id}/members/{member_user_id}")
async def remove_member(
    project_id: str,
    member_user_id: str,
    user: CurrentUser,
    db: Database,
):
    """Remove a member. Any member may leave; removing others needs manage rights."""
    if member_user_id != user.user_id:
        await _require_manager(db, project_id, user.user_id)
    else:
        await _get_member_or_403(db, project_id, user.user_id)

    target = await get_project_member(db, project_id, member_user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    if target.get("role") == "creator" and await count_project_creators(db, project_id) <= 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot remove the last creator of a project",
        )

    await remove_project_member(db, project_id, member_user_id)
    logger.info(f"PROJECT | {project_id} | member removed {member_user_id} by {user.user_id}")
    return {"status": "removed"}
