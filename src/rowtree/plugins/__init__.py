"""Extension layer — plugin system via pluggy.

Discovery: entry_points (pip-installed) via pluggy setuptools entrypoints.
INVARIANT: Plugin failures are warnings, never errors.
"""

from rowtree.plugins.hookspecs import hookimpl
from rowtree.plugins.manager import PluginManager

__all__ = ["PluginManager", "hookimpl"]
