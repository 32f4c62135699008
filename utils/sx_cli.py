#!/usr/bin/env python
"""
CLI runner for background SX circuit solves.

This provides a subprocess entry point for the JobManager pattern.

Usage:
    python utils/sx_cli.py --job-dir jobs/abc123

The job directory should contain:
    - params.json: {"mode": "optimize" | "simulate", ...tool keyword arguments}

Outputs:
    - sx_results.json: Tool result, or {"status": "error", "error_type", "message", "traceback"}
    - progress.json: Coarse progress for get_job_status
    - stdout.log / stderr.log (captured by JobManager)
"""

import sys
import json
import argparse
import asyncio
import logging
import time
import traceback
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

logger = logging.getLogger(__name__)

RESULT_FILE = "sx_results.json"


def write_progress(job_dir: Path, stage: str, current: int, total: int = 100):
    """
    Write progress for JobManager to monitor.

    Args:
        job_dir: Job directory path
        stage: Description of current stage
        current: Current progress (0-100)
        total: Total progress points (default 100)
    """
    progress_file = job_dir / "progress.json"
    try:
        with open(progress_file, 'w') as f:
            json.dump({
                "stage": stage,
                "current": current,
                "total": total,
                "timestamp": time.time()
            }, f)
    except OSError as e:
        logger.warning(f"Failed to write progress: {e}")


async def run_sx_job(job_dir: Path) -> int:
    """
    Run one optimize or fixed-V% solve described by params.json.

    Args:
        job_dir: Job directory containing params.json

    Returns:
        Exit code (0 for success, 1 for error)
    """
    from tools.reagent_optimization import optimize_sx_circuit, simulate_sx_circuit

    params_file = job_dir / "params.json"
    output_file = job_dir / RESULT_FILE

    if not params_file.exists():
        logger.error(f"params.json not found in {job_dir}")
        return 1

    try:
        with open(params_file) as f:
            params = json.load(f)

        mode = params.pop("mode", "optimize")
        logger.info(f"Running SX {mode} job in {job_dir}")

        if mode == "optimize":
            write_progress(job_dir, "Searching V% for SO consistency", 10)
            result = await optimize_sx_circuit(**params)
        elif mode == "simulate":
            write_progress(job_dir, f"Simulating circuits at V%={params.get('v_percent')}", 10)
            result = await simulate_sx_circuit(**params)
        else:
            raise ValueError(f"Unknown job mode '{mode}'")

        write_progress(job_dir, "Writing results", 90)

        with open(output_file, 'w') as f:
            json.dump(result, f, indent=2, allow_nan=False)

        summary = result["summary"]
        logger.info(f"SX {mode} complete: V%={summary['v_percent']:.3f}, "
                    f"LO={summary['loaded_organic_g_L']:.3f} g/L")
        write_progress(job_dir, f"Complete: V%={summary['v_percent']:.2f}", 100)

        return 0

    except Exception as e:
        logger.error(f"SX {job_dir.name} job failed: {e}")
        error_result = {
            "status": "error",
            "error_type": type(e).__name__,
            "message": str(e),
            "traceback": traceback.format_exc()
        }
        with open(output_file, 'w') as f:
            json.dump(error_result, f, indent=2)
        write_progress(job_dir, f"Failed: {type(e).__name__}", 100)
        return 1


def main():
    """Main CLI entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description='Copper SX Circuit Solve CLI Runner'
    )
    parser.add_argument(
        '--job-dir',
        required=True,
        help='Job directory containing params.json'
    )

    args = parser.parse_args()
    job_dir = Path(args.job_dir)

    if not job_dir.exists():
        logger.error(f"Job directory does not exist: {job_dir}")
        return 1

    return asyncio.run(run_sx_job(job_dir))


if __name__ == "__main__":
    sys.exit(main())
