"""亚像素峰定位：在种子峰附近取窗口，对样条导数求零点。"""
from __future__ import annotations

from .errors import WindowOutOfBoundsError
from .models import PeakCandidate, Profile, RefinedPeak
from .spline import SplineModel

DEFAULT_HALF_WIDTH = 2


def refine(
    profile: Profile,
    candidate: PeakCandidate,
    spline: SplineModel,
    half_width: int = DEFAULT_HALF_WIDTH,
) -> RefinedPeak:
    """窗口 [index - half_width, index + half_width] 必须完全落在剖面内，否则抛出 WindowOutOfBoundsError。"""

    lo = candidate.index - half_width
    hi = candidate.index + half_width
    if lo < 0 or hi >= len(profile):
        raise WindowOutOfBoundsError(candidate.index, lo, hi, len(profile))
    root = spline.derivative_root_between(profile.positions[lo], profile.positions[hi])
    return RefinedPeak(seed_index=candidate.index, subpixel_position=root)
