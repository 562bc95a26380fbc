"""Project-level LCA: sums layer impacts per element and per project."""

from typing import Literal

from pydantic import BaseModel
from supabase import Client

from ..database import LCA_PROJECTS_TABLE, LCA_REFERENCE_VALUES_TABLE, utc_now
from ..logging_config import get_logger
from .phases import (
    calculate_a1_a3,
    calculate_a4,
    calculate_a5,
    calculate_b4,
    calculate_c,
    calculate_d,
    calculate_operational_carbon,
    layer_mass,
)
from .queries import get_project_with_elements

logger = get_logger("archidesk.lca")

DEFAULT_STUDY_PERIOD = 75


class ElementResult(BaseModel):
    a1_a3: float = 0.0
    a4: float = 0.0
    a5: float = 0.0
    b4: float = 0.0
    c: float = 0.0
    d: float = 0.0

    @property
    def total(self) -> float:
        """A to C total; D (benefits beyond the system boundary) is reported separately."""
        return self.a1_a3 + self.a4 + self.a5 + self.b4 + self.c


class ElementBreakdown(BaseModel):
    element_id: str
    element_name: str
    total_impact: float
    percentage: float


class PhaseBreakdown(BaseModel):
    production: float
    transport: float
    construction: float
    use_replacement: float
    end_of_life: float
    benefits: float


class LCAResult(BaseModel):
    a1_a3: float
    a4: float
    a5: float
    b4: float
    c1_c2: float
    c3: float
    c4: float
    d: float
    total_a_to_c: float
    total_with_d: float
    breakdown_by_element: list[ElementBreakdown]
    breakdown_by_phase: PhaseBreakdown


class NormalizedResult(LCAResult):
    per_m2: float
    per_m2_per_year: float


class ProjectCalculation(BaseModel):
    """What the calculate endpoint returns and what gets cached on the project."""
    result: NormalizedResult
    operational_carbon: float
    total_carbon: float
    mpg_reference_value: float
    is_compliant: bool


def calculate_element(element: dict, study_period: float) -> ElementResult:
    """Sum every phase over the element's layers."""
    result = ElementResult()
    for layer in element.get("layers") or []:
        material = layer.get("material") or {}
        mass = layer_mass(
            element.get("quantity"),
            layer.get("thickness"),
            layer.get("coverage"),
            material,
        )
        a1_a3 = calculate_a1_a3(mass, material)
        result.a1_a3 += a1_a3
        result.a4 += calculate_a4(mass, material, layer.get("custom_transport_km"))
        result.a5 += calculate_a5(a1_a3, element.get("category"))
        result.b4 += calculate_b4(mass, material, layer.get("custom_lifespan"), study_period)
        result.c += calculate_c(mass, material)
        result.d += calculate_d(mass, material)
    return result


def calculate_lca(elements: list[dict], study_period: float) -> LCAResult:
    totals = ElementResult()
    breakdown = []

    for element in elements:
        er = calculate_element(element, study_period)
        totals.a1_a3 += er.a1_a3
        totals.a4 += er.a4
        totals.a5 += er.a5
        totals.b4 += er.b4
        totals.c += er.c
        totals.d += er.d
        breakdown.append(ElementBreakdown(
            element_id=str(element.get("id")),
            element_name=element.get("name") or "",
            total_impact=er.total,
            percentage=0.0,
        ))

    total_a_to_c = totals.total
    for item in breakdown:
        item.percentage = (item.total_impact / total_a_to_c) * 100 if total_a_to_c > 0 else 0.0

    # Module C is not tracked per sub-module; split with fixed ratios
    return LCAResult(
        a1_a3=totals.a1_a3,
        a4=totals.a4,
        a5=totals.a5,
        b4=totals.b4,
        c1_c2=totals.c * 0.3,
        c3=totals.c * 0.3,
        c4=totals.c * 0.4,
        d=totals.d,
        total_a_to_c=total_a_to_c,
        total_with_d=total_a_to_c + totals.d,
        breakdown_by_element=breakdown,
        breakdown_by_phase=PhaseBreakdown(
            production=totals.a1_a3,
            transport=totals.a4,
            construction=totals.a5,
            use_replacement=totals.b4,
            end_of_life=totals.c,
            benefits=totals.d,
        ),
    )


def normalize_results(result: LCAResult, gfa: float, study_period: float) -> NormalizedResult:
    if gfa <= 0 or study_period <= 0:
        raise ValueError("Gross floor area and study period must be positive")
    per_m2 = result.total_a_to_c / gfa
    return NormalizedResult(
        **result.model_dump(),
        per_m2=per_m2,
        per_m2_per_year=per_m2 / study_period,
    )


def calculate_score(
    actual_value: float,
    base_value: float | None,
    direction: Literal["positive", "negative"] = "negative",
    margin: float = 0.2,
) -> float:
    """Score in [-1, 1] of how far ``actual_value`` sits from ``base_value``.

    With ``direction="negative"`` lower values score higher.
    """
    if base_value is None or margin == 0:
        return 0.0
    normalized = (actual_value - base_value) / margin
    score = -normalized if direction == "negative" else normalized
    return max(-1.0, min(1.0, score))


async def get_mpg_reference(db: Client, building_type: str | None) -> float:
    if not building_type:
        return 0.0
    result = (
        db.table(LCA_REFERENCE_VALUES_TABLE)
        .select("mpg_limit")
        .eq("building_type", building_type)
        .limit(1)
        .execute()
    )
    if not result.data:
        return 0.0
    return float(result.data[0].get("mpg_limit") or 0.0)


async def calculate_project_lca(db: Client, project_id: str) -> ProjectCalculation | None:
    """Run the calculator for a stored project and cache the totals on its row."""
    project = await get_project_with_elements(db, project_id)
    if project is None:
        return None

    study_period = float(project.get("study_period") or DEFAULT_STUDY_PERIOD)
    gfa = float(project.get("gross_floor_area") or 0)

    result = calculate_lca(project.get("elements") or [], study_period)
    normalized = normalize_results(result, gfa, study_period)
    operational = calculate_operational_carbon(project)
    mpg_reference = await get_mpg_reference(db, project.get("building_type"))

    calculation = ProjectCalculation(
        result=normalized,
        operational_carbon=operational,
        total_carbon=normalized.per_m2_per_year + operational / study_period,
        mpg_reference_value=mpg_reference,
        is_compliant=normalized.per_m2_per_year <= mpg_reference,
    )

    db.table(LCA_PROJECTS_TABLE).update({
        "total_gwp_a1_a3": result.a1_a3,
        "total_gwp_a4": result.a4,
        "total_gwp_a5": result.a5,
        "total_gwp_b4": result.b4,
        "total_gwp_c": result.breakdown_by_phase.end_of_life,
        "total_gwp_d": result.d,
        "total_gwp_sum": result.total_a_to_c,
        "total_gwp_per_m2_year": normalized.per_m2_per_year,
        "operational_carbon": calculation.operational_carbon,
        "total_carbon": calculation.total_carbon,
        "mpg_reference_value": mpg_reference,
        "is_compliant": calculation.is_compliant,
        "updated_at": utc_now(),
    }).eq("id", project_id).execute()

    logger.info(
        f"LCA | {project_id} | total={result.total_a_to_c:.1f} kg "
        f"per_m2_year={normalized.per_m2_per_year:.3f} compliant={calculation.is_compliant}"
    )
    return calculation
