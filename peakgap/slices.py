"""单帧处理：选峰 → 样条重建 → 双峰精化 → 距离换算。

状态流转：
- 选峰不足两个：INSUFFICIENT_PEAKS（默认告警跳过；fail_fast 时抛出 InsufficientPeaksError）；
- 任一峰精化失败：WINDOW_OUT_OF_BOUNDS，原始距离照常给出；
- 两峰均精化成功：OK。
DegenerateInputError 不在此处捕获，直接终止整个运行。
"""
from __future__ import annotations

from typing import Callable, List, Optional, Tuple

import numpy as np

from . import peaks as peak_selector
from .errors import InsufficientPeaksError, OutOfDomainError, RefinementError
from .models import (
    PeakGapConfig,
    Profile,
    RefinedPeak,
    SliceDiagnostics,
    SliceOutcome,
    SliceResult,
    SliceStatus,
)
from .refine import refine
from .spline import SplineModel


def _marker_values(spline: SplineModel, positions: List[float]) -> Tuple[np.ndarray, np.ndarray]:
    xs = []
    ys = []
    for x in positions:
        try:
            ys.append(spline.evaluate(x))
        except OutOfDomainError:
            continue
        xs.append(x)
    return np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64)


def process_slice(
    slice_index: int,
    profile: Profile,
    config: PeakGapConfig,
    warnings: Optional[List[str]] = None,
    progress_cb: Callable[[str], None] | None = None,
) -> SliceOutcome:
    """对单帧剖面执行完整流水线，返回结果与诊断坐标。"""

    calibration = config.calibration_factor()
    half_width = config.window_half_width()

    seeds = peak_selector.select(profile, config.min_amplitude, config.reduction_policy)
    diagnostics = SliceDiagnostics(
        seed_positions=np.array([c.position for c in seeds], dtype=np.float64),
        seed_intensities=np.array([c.amplitude for c in seeds], dtype=np.float64),
    )

    if len(seeds) < 2:
        if config.fail_fast:
            raise InsufficientPeaksError(slice_index, len(seeds))
        message = f"slice {slice_index}: found {len(seeds)} peak(s), need 2; skipped"
        print(f"[slices] {message}")
        if warnings is not None:
            warnings.append(message)
        if progress_cb:
            progress_cb(message)
        result = SliceResult(
            slice_index=slice_index,
            status=SliceStatus.INSUFFICIENT_PEAKS,
            message=message,
        )
        return SliceOutcome(result=result, seeds=seeds, diagnostics=diagnostics)

    first, second = seeds
    raw_px = abs(second.position - first.position)

    spline = SplineModel.build(profile)
    diagnostics.spline_x, diagnostics.spline_y = spline.sweep(config.sweep_points)

    refined: List[RefinedPeak] = []
    failures: List[str] = []
    for seed in seeds:
        try:
            refined.append(refine(profile, seed, spline, half_width))
        except RefinementError as exc:
            failures.append(str(exc))

    diagnostics.refined_positions, diagnostics.refined_values = _marker_values(
        spline, [r.subpixel_position for r in refined]
    )

    if failures:
        message = "; ".join(failures)
        print(f"[slices] slice {slice_index}: {message}")
        if warnings is not None:
            warnings.append(f"slice {slice_index}: {message}")
        if progress_cb:
            progress_cb(f"slice {slice_index}: {message}")
        result = SliceResult(
            slice_index=slice_index,
            status=SliceStatus.WINDOW_OUT_OF_BOUNDS,
            raw_distance_px=raw_px,
            raw_distance_physical=raw_px * calibration,
            message=message,
        )
        return SliceOutcome(result=result, seeds=seeds, refined=refined, diagnostics=diagnostics)

    sub_px = abs(refined[1].subpixel_position - refined[0].subpixel_position)
    result = SliceResult(
        slice_index=slice_index,
        status=SliceStatus.OK,
        raw_distance_px=raw_px,
        subpixel_distance_px=sub_px,
        raw_distance_physical=raw_px * calibration,
        subpixel_distance_physical=sub_px * calibration,
    )
    return SliceOutcome(result=result, seeds=seeds, refined=refined, diagnostics=diagnostics)
