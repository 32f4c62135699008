"""
Tools package for copper-sx-design-mcp.

Contains MCP tool implementations for FastMCP server.
"""

from .reagent_optimization import optimize_sx_circuit, simulate_sx_circuit

__all__ = ["optimize_sx_circuit", "simulate_sx_circuit"]
