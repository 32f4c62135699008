"""
Copper Solvent Extraction (SX) Circuit Design MCP Server.

This server provides copper SX circuit design tools including:
- V% optimization: reagent concentration at which extraction and stripping
  agree on the stripped organic (SO_extraction = SO_stripping)
- Fixed-V% simulation of both two-stage circuits
- McCabe-Thiele stage constructions and report tables for both circuits

Circuit:
- Extraction: 2 countercurrent mixer-settlers (E1, E2), PLS feed
- Stripping: 2 countercurrent mixer-settlers (S1, S2), electrowinning electrolyte
- Semi-empirical isotherm for an oxime (Lix984N-type) extractant
"""

import asyncio
import logging
import sys
import time
from typing import Optional, Dict, Any

from mcp.server.fastmcp import FastMCP

from utils.job_manager import JobManager, start_sx_job

# Configure logging - file plus stderr so stdout stays clean for MCP's JSON-RPC transport
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('debug.log'),
        logging.StreamHandler(sys.stderr)
    ]
)
logger = logging.getLogger("copper-sx-design-mcp")

# Per-iteration secant and stage traces stay out of the server log
for lib_name in ("utils.root_finder", "utils.isotherm", "mcp.server.lowlevel"):
    logging.getLogger(lib_name).setLevel(logging.WARNING)

# Initialize the MCP server
mcp = FastMCP("copper-sx-design-calculator")

from tools.reagent_optimization import optimize_sx_circuit, simulate_sx_circuit
from utils.sx_defaults import get_default_process_inputs, get_default_solver_settings


async def optimize_sx_circuit_mcp(
    pls_flow_rate_m3_h: float = 400.0,
    pls_copper_g_L: float = 7.0,
    pls_acid_g_L: float = 1.96,
    max_loading_percent: float = 80.0,
    oa_ratio_extraction: float = 1.25,
    efficiency_e1_percent: float = 95.0,
    efficiency_e2_percent: float = 95.0,
    spent_copper_g_L: float = 35.0,
    spent_acid_g_L: float = 190.0,
    advance_copper_g_L: float = 50.0,
    efficiency_s1_percent: float = 98.0,
    efficiency_s2_percent: float = 98.0,
    solver_settings: Optional[Dict[str, Any]] = None,
    include_report_tables: bool = True,
    run_in_background: bool = False
) -> dict:
    """
    Optimize reagent concentration V% for a copper SX circuit.

    Finds the V% at which the stripped organic leaving stripping equals the
    stripped organic assumed by extraction, then reports both circuits.

    Args:
        pls_flow_rate_m3_h: PLS flow rate, m³/h (default: 400)
        pls_copper_g_L: PLS copper, g/L (default: 7.0)
        pls_acid_g_L: PLS acid, g/L (default: 1.96)
        max_loading_percent: Loaded organic as % of maximum loading (default: 80)
        oa_ratio_extraction: Extraction O/A ratio (default: 1.25)
        efficiency_e1_percent: Stage E1 efficiency, % (default: 95)
        efficiency_e2_percent: Stage E2 efficiency, % (default: 95)
        spent_copper_g_L: Spent electrolyte copper, g/L (default: 35)
        spent_acid_g_L: Spent electrolyte acid, g/L (default: 190)
        advance_copper_g_L: Advance electrolyte copper, g/L (default: 50)
        efficiency_s1_percent: Stage S1 efficiency, % (default: 98)
        efficiency_s2_percent: Stage S2 efficiency, % (default: 98)
        solver_settings: Optional overrides (tolerance, max_iterations, initial_v_percent, ...)
        include_report_tables: Include summary/extraction/stripping tables (default: True)
        run_in_background: Run as a background job and return a job_id (default: False)

    Returns:
        Dict with summary, full result, copper balance and report tables,
        or job status dict with job_id when run_in_background=True
    """
    params = {
        "pls_flow_rate_m3_h": pls_flow_rate_m3_h,
        "pls_copper_g_L": pls_copper_g_L,
        "pls_acid_g_L": pls_acid_g_L,
        "max_loading_percent": max_loading_percent,
        "oa_ratio_extraction": oa_ratio_extraction,
        "efficiency_e1_percent": efficiency_e1_percent,
        "efficiency_e2_percent": efficiency_e2_percent,
        "spent_copper_g_L": spent_copper_g_L,
        "spent_acid_g_L": spent_acid_g_L,
        "advance_copper_g_L": advance_copper_g_L,
        "efficiency_s1_percent": efficiency_s1_percent,
        "efficiency_s2_percent": efficiency_s2_percent,
        "solver_settings": solver_settings,
        "include_report_tables": include_report_tables,
    }

    if run_in_background:
        job = await start_sx_job(params, mode="optimize")
        return {
            "status": "job_started",
            "job_id": job["id"],
            "message": "SX optimization job started. Use get_job_status(job_id) to check progress.",
            "estimated_time_seconds": 5
        }

    return await optimize_sx_circuit(**params)


async def simulate_sx_circuit_mcp(
    v_percent: float,
    pls_flow_rate_m3_h: float = 400.0,
    pls_copper_g_L: float = 7.0,
    pls_acid_g_L: float = 1.96,
    max_loading_percent: float = 80.0,
    oa_ratio_extraction: float = 1.25,
    efficiency_e1_percent: float = 95.0,
    efficiency_e2_percent: float = 95.0,
    spent_copper_g_L: float = 35.0,
    spent_acid_g_L: float = 190.0,
    advance_copper_g_L: float = 50.0,
    efficiency_s1_percent: float = 98.0,
    efficiency_s2_percent: float = 98.0,
    solver_settings: Optional[Dict[str, Any]] = None,
    include_report_tables: bool = True,
    run_in_background: bool = False
) -> dict:
    """
    Simulate both SX circuits at a fixed reagent concentration V%.

    No consistency search: so_consistency in the summary shows how far
    this V% is from a self-consistent circuit.

    Args:
        v_percent: Reagent concentration V% in the organic phase
        (remaining arguments as optimize_sx_circuit_mcp, including
        solver_settings for the extraction stage searches and
        run_in_background)

    Returns:
        Dict with summary, full result, copper balance and report tables,
        or job status dict with job_id when run_in_background=True
    """
    params = {
        "v_percent": v_percent,
        "pls_flow_rate_m3_h": pls_flow_rate_m3_h,
        "pls_copper_g_L": pls_copper_g_L,
        "pls_acid_g_L": pls_acid_g_L,
        "max_loading_percent": max_loading_percent,
        "oa_ratio_extraction": oa_ratio_extraction,
        "efficiency_e1_percent": efficiency_e1_percent,
        "efficiency_e2_percent": efficiency_e2_percent,
        "spent_copper_g_L": spent_copper_g_L,
        "spent_acid_g_L": spent_acid_g_L,
        "advance_copper_g_L": advance_copper_g_L,
        "efficiency_s1_percent": efficiency_s1_percent,
        "efficiency_s2_percent": efficiency_s2_percent,
        "solver_settings": solver_settings,
        "include_report_tables": include_report_tables,
    }

    if run_in_background:
        job = await start_sx_job(params, mode="simulate")
        return {
            "status": "job_started",
            "job_id": job["id"],
            "message": "SX simulation job started. Use get_job_status(job_id) to check progress.",
            "estimated_time_seconds": 2
        }

    return await simulate_sx_circuit(**params)


async def get_default_inputs() -> dict:
    """
    Get the baseline plant case and default solver settings.

    Returns:
        Dict with process_inputs (Lix984N baseline circuit) and solver_settings
    """
    return {
        "process_inputs": get_default_process_inputs(),
        "solver_settings": get_default_solver_settings()
    }


# Register tools
mcp.tool()(optimize_sx_circuit_mcp)
mcp.tool()(simulate_sx_circuit_mcp)
mcp.tool()(get_default_inputs)


# =============================================================================
# Job Management Tools (for background solves)
# =============================================================================

async def get_job_status(job_id: str) -> dict:
    """
    Get the current status of a background job.

    Use this to poll for job completion after calling optimize_sx_circuit_mcp
    with run_in_background=True.

    Args:
        job_id: Job identifier returned from optimize_sx_circuit_mcp

    Returns:
        Dict with job_id, status (queued/running/completed/failed/terminated),
        elapsed_time_seconds, and progress hints if available.
    """
    manager = JobManager()
    return await manager.get_status(job_id)


async def get_job_results(job_id: str) -> dict:
    """
    Get results from a completed background job.

    Args:
        job_id: Job identifier returned from optimize_sx_circuit_mcp

    Returns:
        Dict with job_id, status, total_time_seconds, and results.
    """
    manager = JobManager()
    return await manager.get_results(job_id)


async def list_jobs(status_filter: str = None, limit: int = 20) -> dict:
    """
    List all background jobs with optional status filter.

    Args:
        status_filter: Filter by status ("queued", "running", "completed", "failed", or None for all)
        limit: Maximum number of jobs to return (default: 20)

    Returns:
        Dict with jobs list, total count, and concurrency info.
    """
    manager = JobManager()
    return await manager.list_jobs(status_filter, limit)


async def terminate_job(job_id: str) -> dict:
    """
    Terminate a queued or running background job.

    Args:
        job_id: Job identifier to terminate

    Returns:
        Dict with termination status.
    """
    manager = JobManager()
    return await manager.terminate_job(job_id)


async def wait_for_job(
    job_id: str,
    timeout_seconds: int = 300,
    poll_interval_seconds: float = 1.0
) -> dict:
    """
    Wait for a background job to complete.

    Polls get_job_status until the job completes, fails, or times out.

    Args:
        job_id: Job identifier from optimize_sx_circuit_mcp
        timeout_seconds: Maximum time to wait (default 5 minutes)
        poll_interval_seconds: How often to check status (default 1 second)

    Returns:
        Dict with job results if completed, or error status if failed/timeout.
    """
    manager = JobManager()
    start = time.time()

    while time.time() - start < timeout_seconds:
        status = await manager.get_status(job_id)

        if "error" in status and "status" not in status:
            # Unknown job id
            return status

        if status.get("status") == "completed":
            return await manager.get_results(job_id)

        if status.get("status") == "failed":
            return {
                "job_id": job_id,
                "status": "failed",
                "error": status.get("error", "Unknown error"),
                "exit_code": status.get("exit_code")
            }

        if status.get("status") == "terminated":
            return {
                "job_id": job_id,
                "status": "terminated",
                "error": "Job was terminated before completion"
            }

        await asyncio.sleep(poll_interval_seconds)

    return {
        "job_id": job_id,
        "status": "timeout",
        "error": f"Job did not complete within {timeout_seconds} seconds",
        "last_progress": (await manager.get_status(job_id)).get("progress")
    }


# Register job management tools
mcp.tool()(get_job_status)
mcp.tool()(get_job_results)
mcp.tool()(list_jobs)
mcp.tool()(terminate_job)
mcp.tool()(wait_for_job)


if __name__ == "__main__":
    logger.info("Starting Copper SX Design MCP server...")
    logger.info("  Tools: optimize_sx_circuit_mcp, simulate_sx_circuit_mcp, get_default_inputs")
    logger.info("  Jobs: get_job_status, get_job_results, list_jobs, terminate_job, wait_for_job")

    mcp.run()
