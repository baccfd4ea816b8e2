from ._version import __version__
from . import solvers, utils

__all__ = ["__version__", "solvers", "utils"]
