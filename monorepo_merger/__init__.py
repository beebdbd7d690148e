"""
Monorepo Merger

Merges independently versioned repositories into one workspace monorepo
through an analyze, plan, apply and verify pipeline.
"""

__version__ = "0.1.0"

from .cli import main

__all__ = ["main"]
