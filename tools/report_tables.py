"""
Tabular report views of a solved SX circuit.

Three tables, in the layout an export collaborator (spreadsheet, CSV,
chat rendering) writes out directly:

- summary: headline parameters
- extraction_details: McCabe-Thiele points A-D and efficiency per stage
- stripping_details: same for the stripping stages

Each table is {"title", "columns", "rows"} with rows as plain lists.
Nothing here writes files.
"""

from dataclasses import fields
from typing import Dict, Any, List

from pydantic import BaseModel

from .schemas import OptimizationResult, CircuitResult


POINT_COLUMNS = ["point", "aqueous_cu_g_L", "organic_cu_g_L"]

# (label, StageRecord attribute)
STAGE_POINTS = [
    ("A{n} (inlet)", "inlet"),
    ("B{n} (actual outlet)", "outlet"),
    ("C{n} (organic inlet)", "organic_inlet"),
    ("D{n} (equilibrium)", "equilibrium"),
]


def convert_to_dict(obj):
    """Recursively convert dataclasses and Pydantic models to plain dicts/lists."""
    if isinstance(obj, BaseModel):
        return {k: convert_to_dict(v) for k, v in obj.model_dump().items()}
    if hasattr(obj, "__dataclass_fields__"):
        return {field.name: convert_to_dict(getattr(obj, field.name)) for field in fields(obj)}
    if isinstance(obj, dict):
        return {k: convert_to_dict(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [convert_to_dict(item) for item in obj]
    return obj


def _summary_rows(result: OptimizationResult) -> List[List[Any]]:
    ex = result.extraction
    st = result.stripping
    return [
        ["Optimal reagent concentration (V%)", round(result.v_percent, 2)],
        ["Net copper transfer ((g/L)/V%)", round(st.net_copper_transfer, 3)],
        ["Extraction recovery (%)", round(ex.recovery_percent, 2)],
        ["Stripping recovery (%)", round(st.recovery_percent, 2)],
        ["Maximum loading ML (g/L)", round(ex.maximum_loading, 3)],
        ["Loaded organic LO (g/L)", round(ex.loaded_organic, 3)],
        ["Raffinate Cu (g/L)", round(ex.raffinate, 3)],
        ["Raffinate acid (g/L)", round(ex.raffinate_acid, 3)],
        ["Stripping O/A", round(st.oa_ratio, 3)],
    ]


def _stage_rows(circuit: CircuitResult) -> List[List[Any]]:
    rows = []
    for n, stage in ((1, circuit.stage1), (2, circuit.stage2)):
        for label, attr in STAGE_POINTS:
            point = getattr(stage, attr)
            aqueous = None if point.aqueous is None else round(point.aqueous, 3)
            rows.append([label.format(n=n), aqueous, round(point.organic, 3)])
        rows.append([f"Stage {n} efficiency (%)", round(stage.efficiency_percent, 2), None])
    return rows


def build_report_tables(result: OptimizationResult) -> Dict[str, Dict[str, Any]]:
    """
    Build the summary, extraction and stripping detail tables.

    Args:
        result: Solved circuits (optimized or fixed V%)

    Returns:
        Dict keyed "summary", "extraction_details", "stripping_details"
    """
    return {
        "summary": {
            "title": "Results summary",
            "columns": ["parameter", "value"],
            "rows": _summary_rows(result),
        },
        "extraction_details": {
            "title": "Extraction stages",
            "columns": list(POINT_COLUMNS),
            "rows": _stage_rows(result.extraction),
        },
        "stripping_details": {
            "title": "Stripping stages",
            "columns": list(POINT_COLUMNS),
            "rows": _stage_rows(result.stripping),
        },
    }
