"""
Tests for report tables and JSON conversion of solved circuits.
"""

import json
import pytest
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tools.schemas import ProcessInputs, EquilibriumPoint, SXOptimizationSummary
from tools.reagent_optimization import optimize_reagent_concentration
from tools.report_tables import build_report_tables, convert_to_dict
from utils.sx_defaults import get_default_process_inputs


@pytest.fixture(scope="module")
def result():
    return optimize_reagent_concentration(ProcessInputs(**get_default_process_inputs()))


class TestReportTables:
    """Summary, extraction and stripping tables."""

    def test_table_keys(self, result):
        tables = build_report_tables(result)
        assert set(tables) == {"summary", "extraction_details", "stripping_details"}
        for table in tables.values():
            assert set(table) == {"title", "columns", "rows"}

    def test_summary_rows(self, result):
        rows = build_report_tables(result)["summary"]["rows"]
        assert len(rows) == 9
        assert rows[0] == ["Optimal reagent concentration (V%)", 17.34]
        assert all(len(row) == 2 for row in rows)

    def test_extraction_rows(self, result):
        rows = build_report_tables(result)["extraction_details"]["rows"]
        assert len(rows) == 10
        assert rows[0] == ["A1 (inlet)", 7.0, 7.542]
        assert rows[4] == ["Stage 1 efficiency (%)", 95.0, None]
        assert [row[0] for row in rows[5:9]] == [
            "A2 (inlet)", "B2 (actual outlet)", "C2 (organic inlet)", "D2 (equilibrium)",
        ]

    def test_stripping_rows(self, result):
        rows = build_report_tables(result)["stripping_details"]["rows"]
        assert len(rows) == 10
        assert rows[0][0] == "A1 (inlet)"
        assert rows[0][1] == 50.0
        assert rows[7] == ["C2 (organic inlet)", 35.0, 2.117]
        assert rows[9] == ["Stage 2 efficiency (%)", 98.0, None]


class TestConvertToDict:
    """Plain-dict conversion."""

    def test_result_is_json_serializable(self, result):
        data = convert_to_dict(result)
        encoded = json.loads(json.dumps(data))
        assert encoded["extraction"]["circuit"] == "extraction"
        assert encoded["inputs"]["pls_copper_g_L"] == 7.0
        assert len(encoded["stripping"]["mccabe_thiele"]["equilibrium_curve"]) == 101

    def test_nested_containers(self):
        data = convert_to_dict({"points": (EquilibriumPoint(1.0, 2.0),)})
        assert data == {"points": [{"aqueous": 1.0, "organic": 2.0}]}

    def test_pydantic_model(self, result):
        data = convert_to_dict(SXOptimizationSummary.from_result(result))
        assert data["v_percent"] == result.v_percent
