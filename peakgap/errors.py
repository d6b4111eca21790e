"""Error types raised by the two-peak distance pipeline.

Fatal errors (`DegenerateInputError`) abort a run. Peak-local failures
(`WindowOutOfBoundsError`, `NoRootInBracketError`) are caught per slice and
turned into a slice status. `InsufficientPeaksError` is only raised when the
run is configured to fail fast.
"""
from __future__ import annotations


class PeakGapError(Exception):
    """Base class for all pipeline errors."""


class DegenerateInputError(PeakGapError, ValueError):
    """Profile cannot support a spline (too few samples, non-increasing positions)."""


class OutOfDomainError(PeakGapError, ValueError):
    """Spline evaluated outside ``[first position, last position)``."""

    def __init__(self, x: float, lower: float, upper: float):
        super().__init__(f"x={x:.6g} outside spline domain [{lower:.6g}, {upper:.6g})")
        self.x = x
        self.lower = lower
        self.upper = upper


class RefinementError(PeakGapError):
    """A single peak could not be refined; the slice continues with raw distance only."""


class WindowOutOfBoundsError(RefinementError):
    def __init__(self, seed_index: int, lo: int, hi: int, length: int):
        super().__init__(
            f"refinement window [{lo}..{hi}] around index {seed_index} exceeds profile bounds [0..{length - 1}]"
        )
        self.seed_index = seed_index
        self.lo = lo
        self.hi = hi
        self.length = length


class NoRootInBracketError(RefinementError):
    def __init__(self, lo: float, hi: float, reason: str = "derivative does not change sign"):
        super().__init__(f"no derivative root in [{lo:.6g}, {hi:.6g}]: {reason}")
        self.lo = lo
        self.hi = hi


class InsufficientPeaksError(PeakGapError):
    """Fewer than two peaks survived selection and the run is set to fail fast."""

    def __init__(self, slice_index: int, n_found: int):
        super().__init__(f"slice {slice_index}: found {n_found} peak(s), need 2")
        self.slice_index = slice_index
        self.n_found = n_found
