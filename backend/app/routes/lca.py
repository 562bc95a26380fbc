"""LCA routes: materials, projects, elements, layers and the calculator."""

from fastapi import APIRouter, HTTPException, Query, status

from ..auth import CurrentUser
from ..database import Database
from ..lca import queries
from ..lca.calculator import calculate_project_lca
from ..logging_config import get_logger
from ..models import (
    ElementCreate,
    ElementUpdate,
    LayerCreate,
    LayerReorder,
    LayerUpdate,
    LCAProjectCreate,
    LCAProjectUpdate,
    MaterialCreate,
)

logger = get_logger("archidesk.lca.routes")
router = APIRouter(prefix="/lca", tags=["lca"])


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


def _forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


async def _project_for_read(db, project_id: str, user_id: str) -> dict:
    project = await queries.get_project(db, project_id)
    if project is None:
        raise _not_found("Project")
    if not queries.can_read_project(project, user_id):
        raise _forbidden()
    return project


async def _project_for_edit(db, project_id: str, user_id: str) -> dict:
    project = await queries.get_project(db, project_id)
    if project is None:
        raise _not_found("Project")
    if not queries.can_edit_project(project, user_id):
        raise _forbidden()
    return project


async def _element_for_edit(db, element_id: str, user_id: str) -> dict:
    element = await queries.get_element(db, element_id)
    if element is None:
        raise _not_found("Element")
    await _project_for_edit(db, element["project_id"], user_id)
    return element


async def _layer_for_edit(db, layer_id: str, user_id: str) -> dict:
    layer = await queries.get_layer(db, layer_id)
    if layer is None:
        raise _not_found("Layer")
    await _element_for_edit(db, layer["element_id"], user_id)
    return layer


# =============================================================================
# Materials
# =============================================================================

@router.get("/materials")
async def search_materials(
    user: CurrentUser,
    db: Database,
    search: str | None = None,
    category: str | None = None,
    limit: int = Query(queries.DEFAULT_MATERIAL_LIMIT, ge=1, le=queries.MAX_MATERIAL_LIMIT),
    offset: int = Query(0, ge=0),
):
    materials = await queries.search_materials(db, user.user_id, search, category, limit, offset)
    return {"materials": materials, "count": len(materials), "limit": limit, "offset": offset}


@router.get("/materials/categories")
async def material_categories(user: CurrentUser, db: Database):
    return {"categories": await queries.list_material_categories(db, user.user_id)}


@router.post("/materials", status_code=status.HTTP_201_CREATED)
async def create_material(body: MaterialCreate, user: CurrentUser, db: Database):
    material = await queries.create_material(db, body.model_dump(exclude_none=True), user.user_id)
    logger.info(f"LCA | material created {material.get('id')} by {user.user_id}")
    return material


@router.get("/materials/{material_id}")
async def material_detail(material_id: str, user: CurrentUser, db: Database):
    material = await queries.get_visible_material(db, material_id, user.user_id)
    if material is None:
        raise _not_found("Material")
    return material


# =============================================================================
# Projects
# =============================================================================

@router.get("/projects")
async def list_projects(user: CurrentUser, db: Database):
    return {"projects": await queries.list_projects(db, user.user_id)}


@router.post("/projects", status_code=status.HTTP_201_CREATED)
async def create_project(body: LCAProjectCreate, user: CurrentUser, db: Database):
    return await queries.create_project(db, body.model_dump(exclude_none=True), user.user_id)


@router.get("/projects/{project_id}")
async def project_detail(project_id: str, user: CurrentUser, db: Database):
    await _project_for_read(db, project_id, user.user_id)
    return await queries.get_project_with_elements(db, project_id)


@router.patch("/projects/{project_id}")
async def update_project(project_id: str, body: LCAProjectUpdate, user: CurrentUser, db: Database):
    project = await _project_for_edit(db, project_id, user.user_id)
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        return project
    return await queries.update_project(db, project_id, updates) or {**project, **updates}


@router.delete("/projects/{project_id}")
async def delete_project(project_id: str, user: CurrentUser, db: Database):
    await _project_for_edit(db, project_id, user.user_id)
    await queries.delete_project(db, project_id)
    logger.info(f"LCA | project deleted {project_id} by {user.user_id}")
    return {"status": "deleted"}


@router.post("/projects/{project_id}/calculate")
async def calculate(project_id: str, user: CurrentUser, db: Database):
    """Run the calculator and cache the totals on the project."""
    await _project_for_edit(db, project_id, user.user_id)
    try:
        calculation = await calculate_project_lca(db, project_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if calculation is None:
        raise _not_found("Project")
    return calculation.model_dump()


# =============================================================================
# Elements
# =============================================================================

@router.post("/projects/{project_id}/elements", status_code=status.HTTP_201_CREATED)
async def create_element(project_id: str, body: ElementCreate, user: CurrentUser, db: Database):
    await _project_for_edit(db, project_id, user.user_id)
    return await queries.create_element(db, project_id, body.model_dump(exclude_none=True))


@router.patch("/elements/{element_id}")
async def update_element(element_id: str, body: ElementUpdate, user: CurrentUser, db: Database):
    element = await _element_for_edit(db, element_id, user.user_id)
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        return element
    return await queries.update_element(db, element_id, updates) or {**element, **updates}


@router.delete("/elements/{element_id}")
async def delete_element(element_id: str, user: CurrentUser, db: Database):
    await _element_for_edit(db, element_id, user.user_id)
    await queries.delete_element(db, element_id)
    return {"status": "deleted"}


# =============================================================================
# Layers
# =============================================================================

@router.post("/elements/{element_id}/layers", status_code=status.HTTP_201_CREATED)
async def create_layer(element_id: str, body: LayerCreate, user: CurrentUser, db: Database):
    await _element_for_edit(db, element_id, user.user_id)
    if await queries.get_visible_material(db, body.material_id, user.user_id) is None:
        raise _not_found("Material")
    return await queries.create_layer(db, element_id, body.model_dump(exclude_none=True))


@router.post("/elements/{element_id}/layers/reorder")
async def reorder_layers(element_id: str, body: LayerReorder, user: CurrentUser, db: Database):
    await _element_for_edit(db, element_id, user.user_id)
    try:
        layers = await queries.reorder_layers(db, element_id, body.layer_ids)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"layers": layers}


@router.patch("/layers/{layer_id}")
async def update_layer(layer_id: str, body: LayerUpdate, user: CurrentUser, db: Database):
    layer = await _layer_for_edit(db, layer_id, user.user_id)
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        return layer
    if updates.get("material_id"):
        if await queries.get_visible_material(db, updates["material_id"], user.user_id) is None:
            raise _not_found("Material")
    return await queries.update_layer(db, layer_id, updates) or {**layer, **updates}


@router.delete("/layers/{layer_id}")
async def delete_layer(layer_id: str, user: CurrentUser, db: Database):
    layer = await _layer_for_edit(db, layer_id, user.user_id)
    await queries.delete_layer(db, layer)
    return {"status": "deleted"}
