from ._src.solvers.mls_mpm.solver_mls_mpm import MLSMPMOptions, SolverMLSMPM
from ._src.solvers.solver import FluidSolver
from ._src.solvers.sph.solver_sph import SolverSPH, SPHOptions

__all__ = [
    "FluidSolver",
    "MLSMPMOptions",
    "SPHOptions",
    "SolverMLSMPM",
    "SolverSPH",
]
