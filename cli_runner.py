#!/usr/bin/env python
"""
CLI runner for copper SX circuit design tools.

Runs the same async tools as the MCP server directly from a shell:

    python cli_runner.py optimize
    python cli_runner.py optimize --params '{"pls_copper_g_L": 5.0}' --output result.json
    python cli_runner.py simulate --v-percent 17.3

Results (or a structured error) are printed as JSON, or written with --output.
"""

import sys
import json
import argparse
import asyncio
import logging
import traceback
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

logger = logging.getLogger(__name__)


async def run_sx_tool(command: str, params: dict, v_percent: float = None) -> dict:
    """Run optimize or fixed-V% simulate and return the tool result."""
    from tools.reagent_optimization import optimize_sx_circuit, simulate_sx_circuit

    if command == "simulate":
        if v_percent is None:
            v_percent = params.pop("v_percent", None)
        if v_percent is None:
            raise ValueError("simulate requires --v-percent")
        return await simulate_sx_circuit(v_percent=v_percent, **params)

    return await optimize_sx_circuit(**params)


def main():
    """Main CLI entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )

    parser = argparse.ArgumentParser(
        description='Copper SX Circuit Design CLI Runner'
    )
    parser.add_argument(
        'command',
        choices=['optimize', 'simulate'],
        help='optimize: search V%% for SO consistency; simulate: evaluate at a fixed V%%'
    )
    parser.add_argument(
        '--params',
        default='{}',
        help='JSON object of process inputs overriding the baseline case'
    )
    parser.add_argument(
        '--v-percent',
        type=float,
        default=None,
        help='Reagent concentration V%% for simulate'
    )
    parser.add_argument(
        '--output',
        default=None,
        help='Write the JSON result to this file instead of stdout'
    )

    args = parser.parse_args()

    try:
        params = json.loads(args.params)
        result = asyncio.run(run_sx_tool(args.command, params, args.v_percent))
        exit_code = 0
    except Exception as e:
        logger.error(f"SX {args.command} failed: {e}")
        result = {
            "status": "error",
            "error_type": type(e).__name__,
            "message": str(e),
            "traceback": traceback.format_exc()
        }
        exit_code = 1

    text = json.dumps(result, indent=2)
    if args.output:
        Path(args.output).write_text(text)
        logger.info(f"Wrote {args.output}")
    else:
        print(text)

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
