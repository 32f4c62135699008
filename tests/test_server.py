"""
Tests for the MCP tool wrappers in server.py.

The server module configures logging on import, so it is imported inside
a temporary working directory.
"""

import importlib
import pytest
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def server(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return importlib.import_module("server")


class TestSimulateTool:
    """simulate_sx_circuit_mcp passes settings through and can run as a job."""

    @pytest.mark.asyncio
    async def test_background_run_starts_simulate_job(self, server, monkeypatch):
        started = {}

        async def fake_start(params, mode="optimize"):
            started["params"] = params
            started["mode"] = mode
            return {"id": "abc12345", "status": "queued"}

        monkeypatch.setattr(server, "start_sx_job", fake_start)

        response = await server.simulate_sx_circuit_mcp(
            17.0,
            solver_settings={"stage_tolerance": 1e-9},
            run_in_background=True,
        )

        assert response["status"] == "job_started"
        assert response["job_id"] == "abc12345"
        assert started["mode"] == "simulate"
        assert started["params"]["v_percent"] == 17.0
        assert started["params"]["solver_settings"] == {"stage_tolerance": 1e-9}

    @pytest.mark.asyncio
    async def test_inline_run_uses_solver_settings(self, server):
        result = await server.simulate_sx_circuit_mcp(
            17.0,
            solver_settings={"stage_tolerance": 1e-9},
            include_report_tables=False,
        )

        assert result["summary"]["v_percent"] == 17.0
        assert result["summary"]["so_consistency"] == pytest.approx(-0.150, abs=0.005)
        assert "report_tables" not in result

    @pytest.mark.asyncio
    async def test_unknown_solver_setting_rejected(self, server):
        with pytest.raises(ValueError, match="Unknown solver setting"):
            await server.simulate_sx_circuit_mcp(17.0, solver_settings={"seed": 1.0})


class TestDefaultsTool:

    @pytest.mark.asyncio
    async def test_get_default_inputs(self, server):
        defaults = await server.get_default_inputs()
        assert defaults["process_inputs"]["pls_copper_g_L"] == 7.0
        assert defaults["solver_settings"]["initial_v_percent"] == 17.1
