"""Per-layer embodied-carbon calculations for each life-cycle phase.

Every function takes the layer mass in kg and the material row and
returns kg CO2-eq. Material GWP values are declared per the material's
``declared_unit`` and converted to the layer mass first.
"""

import math
from dataclasses import dataclass

# Default transport distances by material category (km)
DEFAULT_TRANSPORT_DISTANCES = {
    "concrete": 50,
    "masonry": 50,
    "timber": 200,
    "metal": 500,
    "insulation": 500,
    "glass": 500,
    "finishes": 200,
}

# Default reference service life by material category (years)
DEFAULT_SERVICE_LIFE = {
    "concrete": 100,
    "timber": 75,
    "masonry": 100,
    "metal": 75,
    "insulation": 50,
    "glass": 30,
    "finishes": 25,
}

# kg CO2-eq per tonne-km
TRANSPORT_EMISSION_FACTORS = {
    "truck": 0.062,
    "train": 0.022,
    "ship": 0.008,
    "combined": 0.050,
}

# Construction-site impact as a fraction of A1-A3, by element category
A5_FACTORS = {
    "exterior_wall": 0.05,
    "interior_wall": 0.03,
    "floor": 0.04,
    "roof": 0.06,
    "foundation": 0.08,
    "windows": 0.02,
    "doors": 0.02,
    "mep": 0.10,
    "finishes": 0.03,
}
DEFAULT_A5_FACTOR = 0.05

# Operational emission factors (kg CO2-eq per m³ gas / per kWh electricity)
GAS_EMISSION_FACTOR = 1.884
ELECTRICITY_EMISSION_FACTOR = 0.298

_VOLUMETRIC_UNITS = ("m3", "m³", "m2", "m²")


@dataclass
class UnitHandling:
    is_volumetric: bool
    conversion_factor: float
    density: float


def _num(value) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def get_unit_handling(material: dict) -> UnitHandling:
    declared_unit = (material.get("declared_unit") or "1 kg").lower()
    return UnitHandling(
        is_volumetric=any(unit in declared_unit for unit in _VOLUMETRIC_UNITS),
        conversion_factor=_num(material.get("conversion_to_kg")) or 1.0,
        density=_num(material.get("density")),
    )


def apply_unit_conversion(mass: float, gwp_value: float, units: UnitHandling) -> float:
    """Scale a GWP value declared per ``declared_unit`` to ``mass`` kg."""
    if units.is_volumetric and units.density > 0:
        return mass * (gwp_value / units.density)
    if units.conversion_factor == 1:
        return mass * gwp_value
    return (mass / units.conversion_factor) * gwp_value


def layer_mass(quantity: float, thickness: float, coverage: float, material: dict) -> float:
    """Mass in kg: element quantity (m²) x thickness (m) x coverage x density."""
    density = _num(material.get("density")) or _num(material.get("bulk_density"))
    return _num(quantity) * _num(thickness) * _num(coverage) * density


def calculate_a1_a3(mass: float, material: dict) -> float:
    return apply_unit_conversion(mass, _num(material.get("gwp_a1_a3")), get_unit_handling(material))


def calculate_a4(mass: float, material: dict, custom_transport_km: float | None = None) -> float:
    """Transport to site.

    Uses the material's declared A4 value unless a custom distance is set,
    otherwise tonnes x km x mode factor.
    """
    declared = material.get("gwp_a4")
    if declared is not None and custom_transport_km is None:
        return apply_unit_conversion(mass, _num(declared), get_unit_handling(material))

    if custom_transport_km is not None:
        distance = _num(custom_transport_km)
    elif material.get("transport_distance") is not None:
        distance = _num(material.get("transport_distance"))
    else:
        distance = DEFAULT_TRANSPORT_DISTANCES.get(material.get("category") or "", 0)

    mode = (material.get("transport_mode") or "truck").lower()
    factor = TRANSPORT_EMISSION_FACTORS.get(mode, TRANSPORT_EMISSION_FACTORS["truck"])
    return (mass / 1000) * distance * factor


def calculate_a5(a1_a3: float, element_category: str | None) -> float:
    return a1_a3 * A5_FACTORS.get(element_category or "", DEFAULT_A5_FACTOR)


def calculate_c(mass: float, material: dict) -> float:
    units = get_unit_handling(material)
    return sum(
        apply_unit_conversion(mass, _num(material.get(f"gwp_c{i}")), units) for i in range(1, 5)
    )


def calculate_d(mass: float, material: dict) -> float:
    return apply_unit_conversion(mass, _num(material.get("gwp_d")), get_unit_handling(material))


def replacement_count(lifespan: float, study_period: float) -> int:
    """Replacements needed within the study period; the initial install is not counted."""
    if lifespan <= 0 or study_period <= 0:
        return 0
    return max(0, math.ceil(study_period / lifespan) - 1)


def calculate_b4(
    mass: float,
    material: dict,
    custom_lifespan: float | None,
    study_period: float,
) -> float:
    """Replacement impact: each replacement repeats production and end of life."""
    lifespan = (
        _num(custom_lifespan)
        or _num(material.get("reference_service_life"))
        or DEFAULT_SERVICE_LIFE.get(material.get("category") or "", 0)
        or study_period
    )
    replacements = replacement_count(lifespan, study_period)
    if replacements == 0:
        return 0.0
    return replacements * (calculate_a1_a3(mass, material) + calculate_c(mass, material))


def calculate_operational_carbon(project: dict) -> float:
    """Operational emissions over the study period, per m² of gross floor area."""
    gfa = _num(project.get("gross_floor_area"))
    if gfa <= 0:
        return 0.0
    study_period = _num(project.get("study_period")) or 75
    annual = (
        _num(project.get("annual_gas_use")) * GAS_EMISSION_FACTOR
        + _num(project.get("annual_electricity")) * ELECTRICITY_EMISSION_FACTOR
    )
    return annual * study_period / gfa
