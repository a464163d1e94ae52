"""ecoflow: dependency-ordered lifecycle operations across a multi-package workspace.

Discovers packages under a workspace root, models their in-ecosystem
dependencies as a levelled DAG and runs per-package work (refresh,
install) level by level with bounded parallelism.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
