"""Prominence-based maximum finder and the two-peak reduction policy."""
from __future__ import annotations

from typing import List, Sequence

import numpy as np
from scipy.signal import find_peaks

from .models import PeakCandidate, Profile, ReductionPolicy


def _tolerance_prominence(signal: np.ndarray, index: int) -> float:
    """Height of ``signal[index]`` above the saddle toward a taller maximum.

    Each side is scanned until the first sample taller than the peak. A side
    that hits the profile edge first does not bound the peak; if neither side
    finds a taller sample the peak is the global maximum and is measured
    against the lowest sample.
    """

    value = signal[index]
    saddles = []
    open_minima = []
    for side in (signal[index::-1], signal[index:]):
        taller = np.flatnonzero(side > value)
        if taller.size:
            saddles.append(float(side[: taller[0]].min()))
        else:
            open_minima.append(float(side.min()))
    if saddles:
        return float(value - max(saddles))
    return float(value - min(open_minima))


def find_maxima(
    intensities: np.ndarray,
    positions: np.ndarray,
    min_amplitude: float,
) -> List[PeakCandidate]:
    """Local maxima whose prominence strictly exceeds ``min_amplitude``.

    Equivalent to a maximum finder with noise tolerance: a reported maximum
    is separated from any taller maximum by a saddle more than
    ``min_amplitude`` below it. Unlike ``scipy.signal.peak_prominences``, a
    side that runs into the profile edge without meeting a taller sample is
    not used as a reference, so a dominant peak next to a bright edge is kept.

    Edge policy: exclude-edges. The first and last samples are never reported.
    Flat tops resolve to their middle sample. Returned in ascending index order.
    """

    signal = np.asarray(intensities, dtype=np.float64).reshape(-1)
    if signal.size < 3:
        return []
    threshold = max(float(min_amplitude), 0.0)
    idx, _ = find_peaks(signal)
    candidates: List[PeakCandidate] = []
    for i in idx:
        prom = _tolerance_prominence(signal, int(i))
        if prom <= threshold:
            continue
        candidates.append(
            PeakCandidate(
                index=int(i),
                position=float(positions[i]),
                amplitude=float(signal[i]),
                prominence=prom,
            )
        )
    return candidates


def reduce_to_two(
    candidates: Sequence[PeakCandidate],
    policy: ReductionPolicy = ReductionPolicy.DROP_TALLEST,
) -> List[PeakCandidate]:
    """Discard candidates one at a time until two remain.

    ``DROP_TALLEST`` removes the largest remaining amplitude each round, so the
    two peaks kept are the ones that are *not* the tallest. ``KEEP_TALLEST``
    removes the smallest instead. Ties go to the lowest index.
    """

    remaining = list(candidates)
    if len(remaining) <= 2:
        return remaining
    policy = ReductionPolicy(policy)
    while len(remaining) > 2:
        amplitudes = np.array([c.amplitude for c in remaining], dtype=np.float64)
        if policy is ReductionPolicy.DROP_TALLEST:
            drop = int(np.argmax(amplitudes))
        else:
            drop = int(np.argmin(amplitudes))
        del remaining[drop]
    return remaining


def select(
    profile: Profile,
    min_amplitude: float,
    policy: ReductionPolicy = ReductionPolicy.DROP_TALLEST,
) -> List[PeakCandidate]:
    found = find_maxima(profile.intensities, profile.positions, min_amplitude)
    selected = reduce_to_two(found, policy)
    if len(found) > 2:
        print(
            f"[peaks] {len(found)} maxima above tolerance={min_amplitude:g} -> kept indices "
            f"{[c.index for c in selected]} ({ReductionPolicy(policy).value})"
        )
    return selected
