"""Numerics and infrastructure shared by the SX circuit tools."""
