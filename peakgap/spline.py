"""样条重建：用 not-a-knot 三次样条还原离散剖面背后的连续信号。

设计考虑：
- 插值严格经过每个采样点，内部节点处一阶、二阶导数连续；
- 端点采用 not-a-knot 条件，三次及以下多项式可被精确还原（短剖面上的抛物线顶点不受端点影响）；
- `evaluate` 只在 [首个位置, 末个位置) 内有定义，越界直接抛出 `OutOfDomainError`，不外推；
- `derivative_root_between` 在导数上做二分求根，供亚像素峰定位使用。
"""
from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy.interpolate import CubicSpline
from scipy.optimize import bisect

from .errors import DegenerateInputError, NoRootInBracketError, OutOfDomainError
from .models import Profile

ROOT_RTOL = 1e-12
ROOT_XTOL = 1e-8
ROOT_MAXITER = 100


class SplineModel:
    """Immutable not-a-knot cubic spline through a profile's samples."""

    def __init__(self, knots: np.ndarray, values: np.ndarray):
        knots = np.asarray(knots, dtype=np.float64)
        values = np.asarray(values, dtype=np.float64)
        if knots.size < 2 or np.unique(knots).size < 2:
            raise DegenerateInputError("spline needs at least 2 distinct positions")
        if np.any(np.diff(knots) <= 0):
            raise DegenerateInputError("spline positions must be strictly increasing")
        self._knots = knots.copy()
        self._knots.flags.writeable = False
        self._spline = CubicSpline(self._knots, values, bc_type="not-a-knot")
        self._deriv = self._spline.derivative(1)

    @classmethod
    def build(cls, profile: Profile) -> "SplineModel":
        return cls(profile.positions, profile.intensities)

    @property
    def domain(self) -> Tuple[float, float]:
        """Half-open evaluation domain ``[lower, upper)``."""

        return float(self._knots[0]), float(self._knots[-1])

    @property
    def knots(self) -> np.ndarray:
        return self._knots

    def _check_domain(self, x: float) -> None:
        lower, upper = self.domain
        if not (lower <= x < upper):
            raise OutOfDomainError(x, lower, upper)

    def evaluate(self, x: float) -> float:
        x = float(x)
        self._check_domain(x)
        return float(self._spline(x))

    def derivative(self, x: float) -> float:
        x = float(x)
        self._check_domain(x)
        return float(self._deriv(x))

    def sweep(self, n_points: int = 1000) -> Tuple[np.ndarray, np.ndarray]:
        """在 [lower, upper] 上生成等距网格并逐点求值。

        遇到第一个越界点即停止，返回最长的有效前缀；网格末端恰好等于 upper 的点因此被截掉。
        """

        lower, upper = self.domain
        grid = np.linspace(lower, upper, max(int(n_points), 2))
        xs = []
        ys = []
        for x in grid:
            try:
                y = self.evaluate(x)
            except OutOfDomainError:
                break
            xs.append(float(x))
            ys.append(y)
        return np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64)

    def derivative_root_between(self, lo: float, hi: float) -> float:
        """Bisection on the first derivative inside ``[lo, hi]``.

        The bracket may touch the last knot: the derivative itself is defined on
        the closed knot range even though ``evaluate`` is not.
        """

        lo = float(lo)
        hi = float(hi)
        first, last = float(self._knots[0]), float(self._knots[-1])
        if lo > hi:
            lo, hi = hi, lo
        if lo < first or hi > last:
            raise NoRootInBracketError(lo, hi, reason="bracket outside spline knots")

        def fprime(x: float) -> float:
            return float(self._deriv(x))

        try:
            return float(
                bisect(fprime, lo, hi, xtol=ROOT_XTOL, rtol=ROOT_RTOL, maxiter=ROOT_MAXITER)
            )
        except ValueError as exc:
            raise NoRootInBracketError(lo, hi) from exc
        except RuntimeError as exc:
            raise NoRootInBracketError(lo, hi, reason=str(exc)) from exc
