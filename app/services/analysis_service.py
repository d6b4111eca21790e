"""宿主与算法之间的桥梁：负责加载配置、读取图像栈、提取剖面及调用核心流水线。"""
from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
from PIL import Image, ImageSequence

from peakgap.image_ops import to_stack
from peakgap.models import PeakGapConfig, Profile, ReductionPolicy, SeriesBundle
from peakgap.profile import extract_profiles
from peakgap.series import RunResult, run_series

CSV_FIELDS = ["slice", "time", "raw_distance", "subpixel_distance", "status"]


@dataclass
class LineConfig:
    """测量线端点 (row, col) 与线宽（像素）。"""

    start: Tuple[float, float] = (0.0, 0.0)
    end: Tuple[float, float] = (0.0, 0.0)
    linewidth: int = 1


@dataclass
class TimingConfig:
    frame_interval: Optional[float] = None  # 为空时以帧序号作为时间轴
    offset: float = 0.0
    unit: str = "frame"


@dataclass
class StackConfig:
    peaks: PeakGapConfig = field(default_factory=PeakGapConfig)
    line: LineConfig = field(default_factory=LineConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    unit: str = "px"

    def timestamps(self, n_slices: int) -> Optional[np.ndarray]:
        if self.timing.frame_interval is None:
            return None
        if self.timing.frame_interval <= 0:
            raise ValueError("frame_interval must be > 0")
        return self.timing.offset + self.timing.frame_interval * np.arange(n_slices, dtype=np.float64)


def load_config_from_file(path: Path) -> StackConfig:
    """读取 JSON 配置文件，组装 StackConfig 对象。"""

    data = json.loads(Path(path).read_text())
    calibration = data.get("calibration", {})
    peaks = data.get("peaks", {})
    line = data.get("line", {})
    timing = data.get("timing", {})

    peak_config = PeakGapConfig(
        calibration=float(calibration.get("units_per_px", 1.0)),
        min_amplitude=float(peaks.get("min_amplitude", 0.0)),
        half_width=int(peaks.get("half_width", 2)),
        fail_fast=bool(peaks.get("fail_fast", False)),
        reduction_policy=ReductionPolicy(peaks.get("reduction_policy", ReductionPolicy.DROP_TALLEST.value)),
        sweep_points=int(peaks.get("sweep_points", 1000)),
    )
    config = StackConfig(
        peaks=peak_config,
        line=LineConfig(
            start=tuple(float(v) for v in line.get("start", (0.0, 0.0))),
            end=tuple(float(v) for v in line.get("end", (0.0, 0.0))),
            linewidth=int(line.get("linewidth", 1)),
        ),
        timing=TimingConfig(
            frame_interval=None if timing.get("frame_interval") is None else float(timing["frame_interval"]),
            offset=float(timing.get("offset", 0.0)),
            unit=str(timing.get("unit", "frame")),
        ),
        unit=str(calibration.get("unit", "px")),
    )
    if config.peaks.calibration <= 0:
        raise ValueError("calibration.units_per_px must be > 0 in configuration.")
    if tuple(config.line.start) == tuple(config.line.end):
        raise ValueError("line.start and line.end must differ in configuration.")
    config.peaks.validate()
    return config


def export_csv(bundle: SeriesBundle, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for row in bundle.to_rows():
            writer.writerow(row)
    return path


class AnalysisService:
    """封装配置及运行方法，脚本层不直接依赖核心实现细节。"""

    def __init__(self, config: StackConfig):
        self._config = config

    @property
    def config(self) -> StackConfig:
        return self._config

    def with_config(self, config: StackConfig) -> "AnalysisService":
        self._config = config
        return self

    @staticmethod
    def load_stack(path: Path) -> np.ndarray:
        """统一的读图接口：多页 TIFF 逐页读取，单张图片视为一帧。读图失败则抛出 FileNotFoundError。"""

        try:
            with Image.open(path) as img:
                frames = [np.array(frame.copy()) for frame in ImageSequence.Iterator(img)]
        except FileNotFoundError as exc:
            raise exc
        except Exception as exc:
            raise FileNotFoundError(f"Unable to load image stack: {path}") from exc
        return to_stack(frames)

    def profiles(self, stack: np.ndarray) -> List[Profile]:
        line = self._config.line
        return extract_profiles(stack, line.start, line.end, line.linewidth)

    def run(self, stack: np.ndarray, progress_cb=None) -> RunResult:
        """提取每帧剖面并执行双峰间距流水线，返回结构化结果。"""

        return self.run_profiles(self.profiles(stack), progress_cb)

    def run_profiles(self, profiles: List[Profile], progress_cb=None) -> RunResult:
        timestamps = self._config.timestamps(len(profiles))
        return run_series(profiles, self._config.peaks, timestamps=timestamps, progress_cb=progress_cb)
