"""
Agent Relay - drive a coding agent CLI through a fixed sequence of steps.

Each step hands its context to the next one through files in a per-run
scratch workspace rather than through shared process memory.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("agent-relay")
except PackageNotFoundError:  # pragma: no cover - fallback for source checkouts
    __version__ = "0.0.0"

__all__ = ["__version__"]
