"""
Persona Trader - agent personalities that turn market signals into
risk-checked, conflict-safe orders with per-agent performance tracking.
"""
__version__ = "0.1.0"
