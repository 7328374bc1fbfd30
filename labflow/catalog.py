"""Sample-type and test-parameter reference tables.

Parameters are scoped by sample type: choosing a sample type decides which
parameters may be requested, and a parameter's unit, method and default
price feed quotation lines and chemist assignments.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class ParameterSpec:
    """Reference data for one test parameter."""

    name: str
    unit: str
    method: str
    default_price: Decimal


SAMPLE_TYPES: tuple[str, ...] = (
    "Wastewater",
    "Drinking Water",
    "Industrial Effluent",
    "Soil",
    "Food",
    "Noise",
)

PARAMETERS: dict[str, ParameterSpec] = {
    p.name: p
    for p in (
        # Wastewater / effluent
        ParameterSpec("COD", "mg/L", "APHA 5220 D", Decimal("2500")),
        ParameterSpec("BOD", "mg/L", "APHA 5210 B", Decimal("3000")),
        ParameterSpec("pH", "pH units", "APHA 4500-H+ B", Decimal("500")),
        ParameterSpec("Total Suspended Solids", "mg/L", "APHA 2540 D", Decimal("1500")),
        ParameterSpec("Oil & Grease", "mg/L", "APHA 5520 B", Decimal("3500")),
        ParameterSpec("Total Nitrogen", "mg/L", "APHA 4500-N", Decimal("2800")),
        ParameterSpec("Total Phosphorus", "mg/L", "APHA 4500-P", Decimal("2600")),
        # Drinking water
        ParameterSpec("Total Coliform", "CFU/100mL", "APHA 9221 B", Decimal("2000")),
        ParameterSpec("E. coli", "CFU/100mL", "APHA 9221 F", Decimal("2500")),
        ParameterSpec("Turbidity", "NTU", "APHA 2130 B", Decimal("800")),
        ParameterSpec("Chlorine (Free)", "mg/L", "APHA 4500-Cl B", Decimal("600")),
        ParameterSpec("Total Hardness", "mg/L as CaCO3", "APHA 2340 C", Decimal("1200")),
        ParameterSpec("Iron", "mg/L", "APHA 3500-Fe B", Decimal("1500")),
        # Noise
        ParameterSpec("Noise Level", "dB(A)", "ISO 1996-2", Decimal("3000")),
        ParameterSpec("Peak Noise", "dB(A)", "ISO 1996-2", Decimal("3500")),
        ParameterSpec("Background Noise", "dB(A)", "ISO 1996-2", Decimal("2800")),
        # Soil
        ParameterSpec("Moisture Content", "%", "ASTM D2216", Decimal("1800")),
        ParameterSpec("Organic Matter", "%", "ASTM D2974", Decimal("2200")),
        ParameterSpec("Heavy Metals (Lead)", "mg/kg", "EPA 3050B", Decimal("4000")),
        ParameterSpec("Heavy Metals (Cadmium)", "mg/kg", "EPA 3050B", Decimal("4000")),
        # Food
        ParameterSpec("Total Plate Count", "CFU/g", "ISO 4833", Decimal("2500")),
        ParameterSpec("Salmonella", "Presence/25g", "ISO 6579", Decimal("3500")),
        ParameterSpec("Moisture Content (Food)", "%", "AOAC 925.10", Decimal("1500")),
        ParameterSpec("Fat Content", "%", "AOAC 922.06", Decimal("2000")),
    )
}

SAMPLE_TYPE_PARAMETERS: dict[str, tuple[str, ...]] = {
    "Wastewater": (
        "COD",
        "BOD",
        "pH",
        "Total Suspended Solids",
        "Oil & Grease",
        "Total Nitrogen",
        "Total Phosphorus",
        "Turbidity",
        "Iron",
    ),
    "Drinking Water": (
        "Total Coliform",
        "E. coli",
        "pH",
        "Turbidity",
        "Chlorine (Free)",
        "Total Hardness",
        "Iron",
        "Total Suspended Solids",
    ),
    "Industrial Effluent": (
        "COD",
        "BOD",
        "pH",
        "Total Suspended Solids",
        "Oil & Grease",
        "Total Nitrogen",
        "Total Phosphorus",
    ),
    "Noise": ("Noise Level", "Peak Noise", "Background Noise"),
    "Soil": ("pH", "Moisture Content", "Organic Matter", "Heavy Metals (Lead)", "Heavy Metals (Cadmium)"),
    "Food": ("Total Plate Count", "E. coli", "Salmonella", "Moisture Content (Food)", "Fat Content"),
}


def is_known_sample_type(sample_type: str) -> bool:
    return sample_type in SAMPLE_TYPE_PARAMETERS


def parameters_for(sample_type: str) -> list[str]:
    """Legal parameter names for a sample type; empty for an unknown type."""
    return list(SAMPLE_TYPE_PARAMETERS.get(sample_type, ()))


def parameter_spec(name: str) -> ParameterSpec | None:
    return PARAMETERS.get(name)


def default_price(name: str) -> Decimal:
    spec = PARAMETERS.get(name)
    return spec.default_price if spec else Decimal("0")


def illegal_parameters(sample_type: str, parameters: list[str]) -> list[str]:
    """Parameters not allowed for a catalogued sample type.

    Uncatalogued sample types accept any parameter list.
    """
    if not is_known_sample_type(sample_type):
        return []
    allowed = set(SAMPLE_TYPE_PARAMETERS[sample_type])
    return [p for p in parameters if p not in allowed]
