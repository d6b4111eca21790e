"""强度剖面提取：沿用户给定的测量线，从每一帧灰度图中取一维切片。

这一层属于宿主侧（读图、画线），算法核心只接收 `Profile`。
横坐标为沿线的像素距离，因此标定系数可以直接作用在像素位移上。
"""
from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np
from skimage.measure import profile_line

from .models import Profile

Point = Tuple[float, float]


def extract_profile(
    gray_image: np.ndarray,
    start: Point,
    end: Point,
    linewidth: int = 1,
) -> Profile:
    """沿 start→end（(row, col) 坐标，包含端点）采样，线宽大于 1 时对法向取平均。"""

    values = profile_line(
        gray_image,
        start,
        end,
        linewidth=max(int(linewidth), 1),
        order=1,
        mode="reflect",
        reduce_func=np.mean,
    )
    values = np.asarray(values, dtype=np.float64).reshape(-1)
    length = float(np.hypot(end[0] - start[0], end[1] - start[1]))
    positions = np.linspace(0.0, length, values.size)
    return Profile(positions=positions, intensities=values)


def extract_profiles(
    stack: np.ndarray,
    start: Point,
    end: Point,
    linewidth: int = 1,
) -> List[Profile]:
    if stack.ndim == 2:
        stack = stack[np.newaxis, ...]
    if stack.ndim != 3:
        raise ValueError("stack must be (slices, rows, cols)")
    _check_inside(stack.shape[1:], (start, end))
    return [extract_profile(frame, start, end, linewidth) for frame in stack]


def _check_inside(shape: Tuple[int, ...], points: Sequence[Point]) -> None:
    rows, cols = shape
    for row, col in points:
        if not (0 <= row <= rows - 1 and 0 <= col <= cols - 1):
            raise ValueError(f"line endpoint ({row}, {col}) outside image of shape {rows}x{cols}")
