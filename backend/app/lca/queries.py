"""Supabase queries for LCA materials, projects, elements and layers.

Projects belong to the user who created them. Public projects and
templates can be read by anyone but only changed by their owner.
"""

from supabase import Client

from ..database import (
    LCA_ELEMENTS_TABLE,
    LCA_LAYERS_TABLE,
    LCA_MATERIALS_TABLE,
    LCA_PROJECTS_TABLE,
    utc_now,
)

DEFAULT_MATERIAL_LIMIT = 50
MAX_MATERIAL_LIMIT = 100


def escape_like(value: str) -> str:
    """Escape LIKE/ILIKE wildcards in user input."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# =============================================================================
# Materials
# =============================================================================

def _visible_to(user_id: str) -> str:
    # Seeded and generic rows have no owner
    return f"is_public.eq.true,user_id.is.null,user_id.eq.{user_id}"


def can_read_material(material: dict, user_id: str) -> bool:
    owner = material.get("user_id")
    return owner is None or str(owner) == str(user_id) or bool(material.get("is_public"))


async def search_materials(
    db: Client,
    user_id: str,
    search: str | None = None,
    category: str | None = None,
    limit: int = DEFAULT_MATERIAL_LIMIT,
    offset: int = 0,
) -> list[dict]:
    query = db.table(LCA_MATERIALS_TABLE).select("*").or_(_visible_to(user_id))
    if category:
        query = query.eq("category", category)
    if search:
        # Commas and parentheses delimit PostgREST or-filters
        term = search.translate(str.maketrans(",()", "   ")).strip()
        pattern = f"%{escape_like(term)}%"
        query = query.or_(f"name_nl.ilike.{pattern},name_en.ilike.{pattern},name_de.ilike.{pattern}")
    limit = max(1, min(limit, MAX_MATERIAL_LIMIT))
    result = (
        query.order("quality_rating", desc=True)
        .order("name_nl")
        .range(offset, offset + limit - 1)
        .execute()
    )
    return result.data or []


async def list_material_categories(db: Client, user_id: str) -> list[str]:
    result = (
        db.table(LCA_MATERIALS_TABLE)
        .select("category")
        .or_(_visible_to(user_id))
        .execute()
    )
    return sorted({row["category"] for row in result.data or [] if row.get("category")})


async def get_material(db: Client, material_id: str) -> dict | None:
    result = db.table(LCA_MATERIALS_TABLE).select("*").eq("id", material_id).execute()
    return result.data[0] if result.data else None


async def get_visible_material(db: Client, material_id: str, user_id: str) -> dict | None:
    """The material, or None when it is missing or another user's private row."""
    material = await get_material(db, material_id)
    if material is None or not can_read_material(material, user_id):
        return None
    return material


async def create_material(db: Client, data: dict, user_id: str) -> dict:
    """Create a user-defined material. Custom materials are private by default."""
    now = utc_now()
    row = {
        **data,
        "user_id": user_id,
        "is_public": data.get("is_public", False),
        "is_generic": False,
        "is_verified": False,
        "created_at": now,
        "updated_at": now,
    }
    result = db.table(LCA_MATERIALS_TABLE).insert(row).execute()
    return result.data[0] if result.data else row


# =============================================================================
# Projects
# =============================================================================

async def list_projects(db: Client, user_id: str) -> list[dict]:
    result = (
        db.table(LCA_PROJECTS_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .order("updated_at", desc=True)
        .execute()
    )
    return result.data or []


async def get_project(db: Client, project_id: str) -> dict | None:
    result = db.table(LCA_PROJECTS_TABLE).select("*").eq("id", project_id).execute()
    return result.data[0] if result.data else None


def can_read_project(project: dict, user_id: str) -> bool:
    return str(project.get("user_id")) == str(user_id) or bool(project.get("is_public"))


def can_edit_project(project: dict, user_id: str) -> bool:
    return str(project.get("user_id")) == str(user_id)


async def create_project(db: Client, data: dict, user_id: str) -> dict:
    now = utc_now()
    row = {**data, "user_id": user_id, "created_at": now, "updated_at": now}
    result = db.table(LCA_PROJECTS_TABLE).insert(row).execute()
    return result.data[0] if result.data else row


async def update_project(db: Client, project_id: str, updates: dict) -> dict | None:
    result = (
        db.table(LCA_PROJECTS_TABLE)
        .update({**updates, "updated_at": utc_now()})
        .eq("id", project_id)
        .execute()
    )
    return result.data[0] if result.data else None


async def delete_project(db: Client, project_id: str) -> None:
    """Delete a project with its elements and layers."""
    elements = await list_elements(db, project_id)
    element_ids = [e["id"] for e in elements]
    if element_ids:
        db.table(LCA_LAYERS_TABLE).delete().in_("element_id", element_ids).execute()
        db.table(LCA_ELEMENTS_TABLE).delete().eq("project_id", project_id).execute()
    db.table(LCA_PROJECTS_TABLE).delete().eq("id", project_id).execute()


async def get_project_with_elements(db: Client, project_id: str) -> dict | None:
    """Project row with ``elements``, each carrying ordered ``layers`` with their ``material``."""
    project = await get_project(db, project_id)
    if project is None:
        return None

    elements = await list_elements(db, project_id)
    element_ids = [e["id"] for e in elements]

    layers_by_element: dict = {eid: [] for eid in element_ids}
    if element_ids:
        layers = (
            db.table(LCA_LAYERS_TABLE)
            .select("*")
            .in_("element_id", element_ids)
            .order("position")
            .execute()
        ).data or []

        material_ids = list({l["material_id"] for l in layers if l.get("material_id")})
        materials = {}
        if material_ids:
            rows = db.table(LCA_MATERIALS_TABLE).select("*").in_("id", material_ids).execute().data
            materials = {m["id"]: m for m in rows or []}

        for layer in layers:
            material = materials.get(layer.get("material_id"))
            if material is None:
                continue
            layers_by_element.setdefault(layer["element_id"], []).append({**layer, "material": material})

    return {
        **project,
        "elements": [{**e, "layers": layers_by_element.get(e["id"], [])} for e in elements],
    }


# =============================================================================
# Elements
# =============================================================================

async def list_elements(db: Client, project_id: str) -> list[dict]:
    result = (
        db.table(LCA_ELEMENTS_TABLE)
        .select("*")
        .eq("project_id", project_id)
        .order("created_at")
        .execute()
    )
    return result.data or []


async def get_element(db: Client, element_id: str) -> dict | None:
    result = db.table(LCA_ELEMENTS_TABLE).select("*").eq("id", element_id).execute()
    return result.data[0] if result.data else None


async def create_element(db: Client, project_id: str, data: dict) -> dict:
    now = utc_now()
    row = {**data, "project_id": project_id, "created_at": now, "updated_at": now}
    result = db.table(LCA_ELEMENTS_TABLE).insert(row).execute()
    return result.data[0] if result.data else row


async def update_element(db: Client, element_id: str, updates: dict) -> dict | None:
    result = (
        db.table(LCA_ELEMENTS_TABLE)
        .update({**updates, "updated_at": utc_now()})
        .eq("id", element_id)
        .execute()
    )
    return result.data[0] if result.data else None


async def delete_element(db: Client, element_id: str) -> None:
    db.table(LCA_LAYERS_TABLE).delete().eq("element_id", element_id).execute()
    db.table(LCA_ELEMENTS_TABLE).delete().eq("id", element_id).execute()


# =============================================================================
# Layers
# =============================================================================

async def list_layers(db: Client, element_id: str) -> list[dict]:
    result = (
        db.table(LCA_LAYERS_TABLE)
        .select("*")
        .eq("element_id", element_id)
        .order("position")
        .execute()
    )
    return result.data or []


async def get_layer(db: Client, layer_id: str) -> dict | None:
    result = db.table(LCA_LAYERS_TABLE).select("*").eq("id", layer_id).execute()
    return result.data[0] if result.data else None


async def create_layer(db: Client, element_id: str, data: dict) -> dict:
    """Add a layer; without an explicit position it goes below the existing ones."""
    row = {**data, "element_id": element_id}
    if row.get("position") is None:
        existing = await list_layers(db, element_id)
        row["position"] = max((l.get("position") or 0 for l in existing), default=0) + 1
    result = db.table(LCA_LAYERS_TABLE).insert(row).execute()
    return result.data[0] if result.data else row


async def update_layer(db: Client, layer_id: str, updates: dict) -> dict | None:
    result = db.table(LCA_LAYERS_TABLE).update(updates).eq("id", layer_id).execute()
    return result.data[0] if result.data else None


async def delete_layer(db: Client, layer: dict) -> None:
    """Delete a layer and close the gap in the positions below it."""
    db.table(LCA_LAYERS_TABLE).delete().eq("id", layer["id"]).execute()
    for other in await list_layers(db, layer["element_id"]):
        if (other.get("position") or 0) > (layer.get("position") or 0):
            db.table(LCA_LAYERS_TABLE).update({"position": other["position"] - 1}).eq(
                "id", other["id"]
            ).execute()


async def reorder_layers(db: Client, element_id: str, layer_ids: list[str]) -> list[dict]:
    """Assign positions 1..n in the given order.

    Raises ValueError unless ``layer_ids`` is exactly the element's layers.
    """
    existing = {l["id"] for l in await list_layers(db, element_id)}
    if len(layer_ids) != len(set(layer_ids)) or set(layer_ids) != existing:
        raise ValueError("layer_ids must list every layer of the element exactly once")

    for position, layer_id in enumerate(layer_ids, start=1):
        db.table(LCA_LAYERS_TABLE).update({"position": position}).eq("id", layer_id).execute()
    return await list_layers(db, element_id)
