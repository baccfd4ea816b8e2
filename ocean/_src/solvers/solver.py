from abc import ABC, abstractmethod

import warp as wp

__all__ = ["FluidSolver"]


class FluidSolver(ABC):
    """Interface shared by the particle fluid solvers.

    A solver owns its particle and grid buffers and writes one
    ``(position, velocity)`` row per live particle into ``posvel`` every time
    :meth:`compute` runs. Rows past ``num_particles`` are left untouched.
    """

    @abstractmethod
    def reset(self, num_particles: int, box_size) -> bool:
        """Regenerate particles and constants; return ``False`` if the request was rejected."""

    @abstractmethod
    def change_box_size(self, real_box_size):
        """Move the boundary walls without touching particle data."""

    @abstractmethod
    def compute(self, stream: wp.Stream = None):
        """Advance one visible frame and refresh the output buffer."""
