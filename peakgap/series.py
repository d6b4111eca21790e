"""时间序列汇总：按帧顺序累积单帧结果，并提供整段运行的入口 `run_series`。"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Union

import numpy as np

from .models import (
    PeakGapConfig,
    Profile,
    SeriesBundle,
    SliceDiagnostics,
    SliceOutcome,
    SliceResult,
    SliceStatus,
)
from .slices import process_slice


class SeriesAggregator:
    """Ordered store of per-slice results, owned by the caller of the pipeline.

    Slice indices are 1-based and must arrive contiguously; gaps are never
    filled, a failed slice keeps NaN distances next to its status.
    """

    def __init__(self, timestamps: Optional[Sequence[float]] = None):
        self._timestamps = None if timestamps is None else np.asarray(timestamps, dtype=np.float64).reshape(-1)
        self._results: List[SliceResult] = []
        self._diagnostics: List[Optional[SliceDiagnostics]] = []

    def __len__(self) -> int:
        return len(self._results)

    @property
    def results(self) -> List[SliceResult]:
        return list(self._results)

    @property
    def diagnostics(self) -> List[Optional[SliceDiagnostics]]:
        """诊断数据栈，顺序与帧序一致。"""

        return list(self._diagnostics)

    def record(
        self,
        slice_index: int,
        result: SliceResult,
        diagnostics: Optional[SliceDiagnostics] = None,
    ) -> None:
        expected = len(self._results) + 1
        if slice_index != expected:
            raise ValueError(f"slice {slice_index} recorded out of order (expected {expected})")
        if result.slice_index != slice_index:
            raise ValueError(
                f"result belongs to slice {result.slice_index}, not {slice_index}"
            )
        self._results.append(result)
        self._diagnostics.append(diagnostics)

    def finalize(self) -> SeriesBundle:
        n = len(self._results)
        if self._timestamps is None:
            timestamps = np.arange(1, n + 1, dtype=np.float64)
        else:
            if self._timestamps.size < n:
                raise ValueError(
                    f"{self._timestamps.size} timestamps supplied for {n} recorded slices"
                )
            timestamps = self._timestamps[:n].copy()
        return SeriesBundle(
            timestamps=timestamps,
            raw_distances=np.array([r.raw_distance_physical for r in self._results], dtype=np.float64),
            subpixel_distances=np.array(
                [r.subpixel_distance_physical for r in self._results], dtype=np.float64
            ),
            statuses=[r.status for r in self._results],
        )


@dataclass
class RunResult:
    """一次完整运行的输出：汇总序列、逐帧结果与告警。"""

    bundle: SeriesBundle
    outcomes: List[SliceOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def summary_dict(self) -> dict:
        summary = self.bundle.summary_dict()
        summary["warnings"] = list(self.warnings)
        return summary


def _as_profile(item: Union[Profile, np.ndarray, Sequence[float]]) -> Profile:
    if isinstance(item, Profile):
        return item
    return Profile.from_intensities(item)


def run_series(
    profiles: Iterable[Union[Profile, np.ndarray, Sequence[float]]],
    config: PeakGapConfig,
    timestamps: Optional[Sequence[float]] = None,
    aggregator: Optional[SeriesAggregator] = None,
    progress_cb: Callable[[str], None] | None = None,
) -> RunResult:
    """逐帧执行流水线并按帧序汇总。

    传入已有的 aggregator 时，时间戳由 aggregator 自身持有，帧号接着其已记录的帧数继续编号。
    DegenerateInputError 以及 fail_fast 下的 InsufficientPeaksError 会直接向上抛出。
    """

    config.validate()
    if aggregator is None:
        aggregator = SeriesAggregator(timestamps)
    elif timestamps is not None:
        raise ValueError("pass timestamps to the SeriesAggregator, not alongside it")
    warnings: List[str] = []
    outcomes: List[SliceOutcome] = []
    for slice_index, item in enumerate(profiles, start=len(aggregator) + 1):
        outcome = process_slice(slice_index, _as_profile(item), config, warnings, progress_cb)
        aggregator.record(slice_index, outcome.result, outcome.diagnostics)
        outcomes.append(outcome)
        if progress_cb:
            progress_cb(f"slice {slice_index}: {outcome.result.status.value}")

    bundle = aggregator.finalize()
    counts = bundle.summary_dict()["status_counts"]
    print(
        f"[series] {len(bundle)} slices | ok={counts[SliceStatus.OK.value]} "
        f"insufficient={counts[SliceStatus.INSUFFICIENT_PEAKS.value]} "
        f"window={counts[SliceStatus.WINDOW_OUT_OF_BOUNDS.value]}"
    )
    return RunResult(bundle=bundle, outcomes=outcomes, warnings=warnings)
