"""
Schemas for the Copper SX Circuit Design Tools

Pydantic models validate tool input and summarize tool output; plain
dataclasses carry the solver's internal records (process inputs, stage
constructions, circuit results), which are rebuilt from scratch for every
trial V% and never shared between solves.

Concentrations are g/L, flows m³/h, efficiencies and V% in percent.
"""

from typing import Optional, Dict, List
from dataclasses import dataclass, field
from pydantic import BaseModel, Field, PositiveFloat, field_validator


# ============================================================================
# SOLVER RECORDS (dataclasses)
# ============================================================================

@dataclass(frozen=True)
class ProcessInputs:
    """
    Scalar engineering parameters for one solve request.

    No validation happens here: the numerical core fails clearly on
    unusable values instead of sanitizing them. Use SXCircuitInput at the
    tool boundary.
    """
    pls_flow_rate_m3_h: float
    pls_copper_g_L: float
    pls_acid_g_L: float
    max_loading_percent: float
    oa_ratio_extraction: float
    efficiency_e1_percent: float
    efficiency_e2_percent: float
    spent_copper_g_L: float
    spent_acid_g_L: float
    advance_copper_g_L: float
    efficiency_s1_percent: float
    efficiency_s2_percent: float


@dataclass
class EquilibriumPoint:
    """(aqueous Cu, organic Cu) pair in g/L."""
    aqueous: Optional[float]  # None for a loading with no real aqueous root
    organic: float


@dataclass
class StageRecord:
    """
    McCabe-Thiele construction of one mixer-settler stage.

    Attributes:
        inlet: Point A, aqueous inlet against organic outlet
        outlet: Point B, actual outlet operating point
        organic_inlet: Point C, organic inlet operating point
        equilibrium: Point D, equilibrium point for the stage outlet
        efficiency_percent: Stage efficiency used
    """
    inlet: EquilibriumPoint
    outlet: EquilibriumPoint
    organic_inlet: EquilibriumPoint
    equilibrium: EquilibriumPoint
    efficiency_percent: float


@dataclass
class McCabeThieleData:
    """Curve samples, operating line endpoints and stage markers for plotting."""
    equilibrium_curve: List[EquilibriumPoint]
    operating_line: Dict[str, EquilibriumPoint]  # keyed "SO", "LO"
    stage_markers: Dict[str, EquilibriumPoint]  # keyed "E1"/"E2" or "S1"/"S2"


@dataclass
class CircuitResult:
    """State of one two-stage circuit at a given V%."""
    circuit: str
    loaded_organic: float
    stripped_organic: float
    aqueous_outlet: float
    recovery_percent: float
    net_copper_transfer: float  # (LO - SO) / V%
    oa_ratio: float
    stage1: StageRecord
    stage2: StageRecord
    mccabe_thiele: McCabeThieleData


@dataclass
class ExtractionResult(CircuitResult):
    """Extraction circuit state; aqueous_outlet is the raffinate."""
    maximum_loading: float = 0.0
    raffinate_acid: float = 0.0

    @property
    def raffinate(self) -> float:
        return self.aqueous_outlet


@dataclass
class StrippingResult(CircuitResult):
    """Stripping circuit state; aqueous_outlet is the advance electrolyte."""
    aqueous_inlet: float = 0.0  # spent electrolyte Cu


@dataclass
class OptimizationResult:
    """
    Converged (or fixed) V% with both circuit results.

    residual is extraction SO minus stripping SO and is ~0 after the
    consistency search.
    """
    v_percent: float
    inputs: ProcessInputs
    extraction: ExtractionResult
    stripping: StrippingResult
    residual: float
    objective_evaluations: Optional[int] = field(default=None)  # None for fixed-V% runs

    @property
    def so_consistency(self) -> float:
        return self.residual


# ============================================================================
# TOOL INPUT / OUTPUT (pydantic)
# ============================================================================

class SXCircuitInput(BaseModel):
    """
    Input parameters for copper SX circuit optimization.

    Defaults reproduce the Lix984N baseline circuit.
    """

    # Extraction
    pls_flow_rate_m3_h: PositiveFloat = Field(
        default=400.0,
        description="Pregnant leach solution (PLS) flow rate in m³/h",
        examples=[400.0, 800.0]
    )

    pls_copper_g_L: PositiveFloat = Field(
        default=7.0,
        description="Copper concentration in the PLS feed, g/L",
        examples=[3.0, 7.0]
    )

    pls_acid_g_L: PositiveFloat = Field(
        default=1.96,
        description="Free sulfuric acid in the PLS feed, g/L",
        examples=[1.96, 5.0]
    )

    max_loading_percent: float = Field(
        default=80.0,
        gt=0.0,
        le=100.0,
        description="Loaded organic as a percentage of maximum loading (%ML). "
        "Kept below 100% to limit iron co-extraction",
        examples=[80.0, 90.0]
    )

    oa_ratio_extraction: PositiveFloat = Field(
        default=1.25,
        description="Organic/aqueous volumetric flow ratio in extraction",
        examples=[1.0, 1.25]
    )

    efficiency_e1_percent: float = Field(
        default=95.0, gt=0.0, le=100.0,
        description="Stage efficiency of extraction stage E1, %"
    )

    efficiency_e2_percent: float = Field(
        default=95.0, gt=0.0, le=100.0,
        description="Stage efficiency of extraction stage E2, %"
    )

    # Stripping
    spent_copper_g_L: PositiveFloat = Field(
        default=35.0,
        description="Copper in spent electrolyte returning from electrowinning, g/L",
        examples=[35.0]
    )

    spent_acid_g_L: PositiveFloat = Field(
        default=190.0,
        description="Sulfuric acid in spent electrolyte, g/L",
        examples=[180.0, 190.0]
    )

    advance_copper_g_L: PositiveFloat = Field(
        default=50.0,
        description="Copper in advance (rich) electrolyte leaving stripping, g/L",
        examples=[50.0]
    )

    efficiency_s1_percent: float = Field(
        default=98.0, gt=0.0, le=100.0,
        description="Stage efficiency of stripping stage S1, %"
    )

    efficiency_s2_percent: float = Field(
        default=98.0, gt=0.0, le=100.0,
        description="Stage efficiency of stripping stage S2, %"
    )

    @field_validator('advance_copper_g_L')
    @classmethod
    def validate_advance_above_spent(cls, v, info):
        """Electrolyte must gain copper across stripping."""
        if 'spent_copper_g_L' in info.data:
            spent = info.data['spent_copper_g_L']
            if v <= spent:
                raise ValueError(
                    f"advance_copper_g_L ({v}) must be greater than "
                    f"spent_copper_g_L ({spent})"
                )
        return v

    def to_process_inputs(self) -> ProcessInputs:
        return ProcessInputs(**self.model_dump())

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "pls_flow_rate_m3_h": 400.0,
                    "pls_copper_g_L": 7.0,
                    "pls_acid_g_L": 1.96,
                    "max_loading_percent": 80.0,
                    "oa_ratio_extraction": 1.25,
                    "efficiency_e1_percent": 95.0,
                    "efficiency_e2_percent": 95.0,
                    "spent_copper_g_L": 35.0,
                    "spent_acid_g_L": 190.0,
                    "advance_copper_g_L": 50.0,
                    "efficiency_s1_percent": 98.0,
                    "efficiency_s2_percent": 98.0
                }
            ]
        }
    }


class SXOptimizationSummary(BaseModel):
    """
    Headline results of an SX circuit solve.
    """

    v_percent: float = Field(
        description="Reagent concentration V% in the organic phase",
        examples=[17.34]
    )

    net_copper_transfer: float = Field(
        description="Net copper transfer (LO - SO) / V%, (g/L)/V%",
        examples=[0.313]
    )

    extraction_recovery_percent: float = Field(
        description="Copper recovered from the PLS, %",
        examples=[96.86]
    )

    stripping_recovery_percent: float = Field(
        description="Copper stripped from the loaded organic, %",
        examples=[71.93]
    )

    maximum_loading_g_L: float = Field(
        description="Maximum organic loading ML at feed copper, g/L",
        examples=[9.427]
    )

    loaded_organic_g_L: float = Field(
        description="Loaded organic LO, g/L",
        examples=[7.542]
    )

    stripped_organic_g_L: float = Field(
        description="Stripped organic SO returned to extraction, g/L",
        examples=[2.117]
    )

    raffinate_copper_g_L: float = Field(
        description="Copper remaining in the raffinate, g/L",
        examples=[0.220]
    )

    raffinate_acid_g_L: float = Field(
        description="Acid in the raffinate after copper exchange, g/L",
        examples=[12.402]
    )

    oa_ratio_stripping: float = Field(
        description="Derived organic/aqueous ratio in stripping",
        examples=[2.765]
    )

    so_consistency: float = Field(
        description="Extraction SO minus stripping SO (≈0 when consistent), g/L",
        examples=[0.0]
    )

    @classmethod
    def from_result(cls, result: OptimizationResult) -> "SXOptimizationSummary":
        ex = result.extraction
        st = result.stripping
        return cls(
            v_percent=result.v_percent,
            net_copper_transfer=st.net_copper_transfer,
            extraction_recovery_percent=ex.recovery_percent,
            stripping_recovery_percent=st.recovery_percent,
            maximum_loading_g_L=ex.maximum_loading,
            loaded_organic_g_L=ex.loaded_organic,
            stripped_organic_g_L=st.stripped_organic,
            raffinate_copper_g_L=ex.raffinate,
            raffinate_acid_g_L=ex.raffinate_acid,
            oa_ratio_stripping=st.oa_ratio,
            so_consistency=result.residual,
        )
