from ._src.solvers.dam_break import dam_break_lattice
from ._src.utils.dispatch import find_optimal_dispatch_size
from ._src.utils.prefix_sum import PrefixSum

__all__ = [
    "PrefixSum",
    "dam_break_lattice",
    "find_optimal_dispatch_size",
]
