"""双峰间距计量数据模型

定义剖面 (profile)、峰候选、亚像素峰、单帧结果以及整体配置的数据结构。
位置量统一使用像素单位 (px)，物理量由标定系数换算得到。

Classes:
    Profile: 单帧的 (position, intensity) 采样序列
    PeakCandidate / RefinedPeak: 峰候选与亚像素精化结果
    SliceStatus / SliceResult: 单帧状态与距离结果（不可变）
    SliceDiagnostics / SliceOutcome: 供外部渲染的诊断坐标
    PeakGapConfig: 一次运行的全部配置
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np

from .errors import DegenerateInputError

UNSET = float("nan")


class ReductionPolicy(str, Enum):
    """多于两个候选峰时的削减策略。"""

    DROP_TALLEST = "drop_tallest"  # 逐个剔除最高峰（沿用的既有行为）
    KEEP_TALLEST = "keep_tallest"  # 逐个剔除最低峰


class SliceStatus(str, Enum):
    OK = "OK"
    INSUFFICIENT_PEAKS = "INSUFFICIENT_PEAKS"
    WINDOW_OUT_OF_BOUNDS = "WINDOW_OUT_OF_BOUNDS"


@dataclass(frozen=True, eq=False)
class Profile:
    """沿测量线的一维强度剖面，位置严格递增。"""

    positions: np.ndarray
    intensities: np.ndarray

    def __post_init__(self) -> None:
        positions = np.asarray(self.positions, dtype=np.float64).reshape(-1)
        intensities = np.asarray(self.intensities, dtype=np.float64).reshape(-1)
        if positions.size != intensities.size:
            raise DegenerateInputError(
                f"positions ({positions.size}) and intensities ({intensities.size}) differ in length"
            )
        if positions.size < 2:
            raise DegenerateInputError(f"profile needs at least 2 samples, got {positions.size}")
        if not (np.all(np.isfinite(positions)) and np.all(np.isfinite(intensities))):
            raise DegenerateInputError("profile contains non-finite values")
        if np.any(np.diff(positions) <= 0):
            raise DegenerateInputError("profile positions must be strictly increasing")
        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "intensities", intensities)

    @classmethod
    def from_intensities(cls, values: Sequence[float]) -> "Profile":
        """整数横坐标 0..N-1 的剖面，对应图像上逐像素采样。"""

        arr = np.asarray(values, dtype=np.float64).reshape(-1)
        return cls(positions=np.arange(arr.size, dtype=np.float64), intensities=arr)

    def __len__(self) -> int:
        return int(self.positions.size)


@dataclass(frozen=True)
class PeakCandidate:
    index: int
    position: float
    amplitude: float
    prominence: float = 0.0


@dataclass(frozen=True)
class RefinedPeak:
    seed_index: int
    subpixel_position: float


@dataclass(frozen=True)
class SliceResult:
    """单帧测量记录。未计算的距离字段保持为 NaN。"""

    slice_index: int
    status: SliceStatus
    raw_distance_px: float = UNSET
    subpixel_distance_px: float = UNSET
    raw_distance_physical: float = UNSET
    subpixel_distance_physical: float = UNSET
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is SliceStatus.OK


@dataclass
class SliceDiagnostics:
    """纯坐标形式的诊断数据：样条曲线、种子峰标记与精化峰标记。"""

    spline_x: np.ndarray = field(default_factory=lambda: np.zeros(0))
    spline_y: np.ndarray = field(default_factory=lambda: np.zeros(0))
    seed_positions: np.ndarray = field(default_factory=lambda: np.zeros(0))
    seed_intensities: np.ndarray = field(default_factory=lambda: np.zeros(0))
    refined_positions: np.ndarray = field(default_factory=lambda: np.zeros(0))
    refined_values: np.ndarray = field(default_factory=lambda: np.zeros(0))


@dataclass
class SliceOutcome:
    result: SliceResult
    seeds: List[PeakCandidate] = field(default_factory=list)
    refined: List[RefinedPeak] = field(default_factory=list)
    diagnostics: SliceDiagnostics = field(default_factory=SliceDiagnostics)


@dataclass
class PeakGapConfig:
    """单次运行配置：标定系数、峰检测阈值与精化窗口半宽。"""

    calibration: float = 1.0  # 物理单位 / 像素，作用于位移而非绝对位置
    min_amplitude: float = 0.0  # 峰检测的噪声容限（突出度阈值）
    half_width: int = 2  # 亚像素精化窗口半宽（采样点数）
    fail_fast: bool = False
    reduction_policy: ReductionPolicy = ReductionPolicy.DROP_TALLEST
    sweep_points: int = 1000  # 诊断用样条曲线的采样点数

    def calibration_factor(self) -> float:
        if not np.isfinite(self.calibration) or self.calibration <= 0:
            raise ValueError("calibration must be > 0")
        return float(self.calibration)

    def window_half_width(self) -> int:
        if int(self.half_width) < 1:
            raise ValueError("half_width must be >= 1")
        return int(self.half_width)

    def validate(self) -> "PeakGapConfig":
        self.calibration_factor()
        self.window_half_width()
        if self.min_amplitude < 0:
            raise ValueError("min_amplitude must be >= 0")
        if self.sweep_points < 2:
            raise ValueError("sweep_points must be >= 2")
        self.reduction_policy = ReductionPolicy(self.reduction_policy)
        return self


@dataclass
class SeriesBundle:
    """按帧顺序对齐的四条序列：时间戳、原始距离、亚像素距离、状态。"""

    timestamps: np.ndarray
    raw_distances: np.ndarray
    subpixel_distances: np.ndarray
    statuses: List[SliceStatus]

    def __len__(self) -> int:
        return len(self.statuses)

    def to_rows(self) -> List[Dict[str, object]]:
        rows = []
        for i, status in enumerate(self.statuses):
            rows.append(
                {
                    "slice": i + 1,
                    "time": float(self.timestamps[i]),
                    "raw_distance": float(self.raw_distances[i]),
                    "subpixel_distance": float(self.subpixel_distances[i]),
                    "status": status.value,
                }
            )
        return rows

    def summary_dict(self) -> dict:
        """以 dict 形式导出主要统计量，便于日志或报告。"""

        ok_mask = np.array([s is SliceStatus.OK for s in self.statuses], dtype=bool)
        ok_values = self.subpixel_distances[ok_mask] if ok_mask.size else np.zeros(0)
        mean: Optional[float] = float(np.mean(ok_values)) if ok_values.size else None
        std: Optional[float] = float(np.std(ok_values, ddof=1)) if ok_values.size > 1 else None
        counts = {status.value: 0 for status in SliceStatus}
        for status in self.statuses:
            counts[status.value] += 1
        return {
            "n_slices": len(self.statuses),
            "status_counts": counts,
            "mean_subpixel_distance": mean,
            "std_subpixel_distance": std,
        }
