"""图像基础操作：把任意帧转换为单通道浮点灰度，并把多帧整理成 (slices, rows, cols) 栈。"""
from __future__ import annotations

from typing import Iterable

import numpy as np


def to_gray(image: np.ndarray) -> np.ndarray:
    """将单帧转换为 float64 灰度图，保留原始强度量级（不做归一化，噪声容限才有意义）。"""

    if image.ndim == 2:
        return image.astype(np.float64)
    if image.ndim == 3:
        if image.shape[2] == 1:
            return image[..., 0].astype(np.float64)
        if image.shape[2] >= 3:
            rgb = image[..., :3].astype(np.float64)
            return 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
        raise ValueError("Unsupported channel count for grayscale conversion.")
    raise ValueError("image must be 2D or 3-channel RGB-like array.")


def to_stack(frames: Iterable[np.ndarray]) -> np.ndarray:
    """逐帧灰度化后堆叠；所有帧尺寸必须一致。"""

    gray_frames = [to_gray(np.asarray(frame)) for frame in frames]
    if not gray_frames:
        raise ValueError("image stack is empty")
    shape = gray_frames[0].shape
    for i, frame in enumerate(gray_frames[1:], start=2):
        if frame.shape != shape:
            raise ValueError(f"slice {i} has shape {frame.shape}, expected {shape}")
    return np.stack(gray_frames, axis=0)
