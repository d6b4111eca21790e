"""核心算法单元测试：覆盖样条重建、选峰与削减策略、亚像素精化、单帧状态机与序列汇总。

测试分类：
- TestSplineModel: 插值、定义域、扫描截断、导数求根
- TestPeakSelector: 噪声容限、削减策略
- TestSubpixelRefiner: 解析峰定位、窗口越界
- TestSliceProcessor: 状态机与标定换算
- TestSeriesAggregator: 帧序、缺失帧、fail-fast
"""
from __future__ import annotations

import math
import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from peakgap.errors import (
    DegenerateInputError,
    InsufficientPeaksError,
    NoRootInBracketError,
    OutOfDomainError,
    WindowOutOfBoundsError,
)
from peakgap.models import PeakCandidate, PeakGapConfig, Profile, ReductionPolicy, SliceResult, SliceStatus
from peakgap.peaks import find_maxima, reduce_to_two, select
from peakgap.refine import refine
from peakgap.series import SeriesAggregator, run_series
from peakgap.slices import process_slice
from peakgap.spline import SplineModel


# ============================================================================
# Fixtures
# ============================================================================


def _gaussians(centers, amplitudes, n=61, sigma=3.0) -> np.ndarray:
    x = np.arange(n, dtype=np.float64)
    y = np.zeros(n)
    for c, a in zip(centers, amplitudes):
        y += a * np.exp(-((x - c) ** 2) / (2 * sigma**2))
    return y


@pytest.fixture
def two_peak_profile() -> Profile:
    """Two well separated Gaussians at 20.4 and 40.7 px."""
    return Profile.from_intensities(_gaussians([20.4, 40.7], [100.0, 80.0]))


@pytest.fixture
def one_peak_profile() -> Profile:
    return Profile.from_intensities(_gaussians([30.0], [100.0]))


@pytest.fixture
def parabola_profile() -> Profile:
    """Negative parabola with its vertex at 20.3, sampled at integers 0..40."""
    x = np.arange(41, dtype=np.float64)
    return Profile(positions=x, intensities=100.0 - (x - 20.3) ** 2)


@pytest.fixture
def default_config() -> PeakGapConfig:
    return PeakGapConfig(calibration=0.5, min_amplitude=10.0, half_width=2)


# ============================================================================
# Profile / SplineModel
# ============================================================================


class TestProfile:
    def test_non_increasing_positions_rejected(self) -> None:
        with pytest.raises(DegenerateInputError):
            Profile(positions=[0.0, 1.0, 1.0], intensities=[0.0, 1.0, 2.0])

    def test_single_sample_rejected(self) -> None:
        with pytest.raises(DegenerateInputError):
            Profile.from_intensities([1.0])

    def test_length_mismatch_rejected(self) -> None:
        with pytest.raises(DegenerateInputError):
            Profile(positions=[0.0, 1.0, 2.0], intensities=[0.0, 1.0])


class TestSplineModel:
    def test_passes_through_knots(self) -> None:
        rng = np.random.RandomState(7)
        positions = np.cumsum(rng.uniform(0.3, 2.0, size=25))
        intensities = rng.normal(0.0, 5.0, size=25)
        spline = SplineModel.build(Profile(positions=positions, intensities=intensities))
        for x, y in zip(positions[:-1], intensities[:-1]):
            assert spline.evaluate(x) == pytest.approx(y, abs=1e-9)

    def test_two_sample_spline_is_linear(self) -> None:
        spline = SplineModel.build(Profile(positions=[0.0, 2.0], intensities=[1.0, 3.0]))
        assert spline.evaluate(1.0) == pytest.approx(2.0)

    def test_evaluate_outside_domain_raises(self) -> None:
        spline = SplineModel.build(Profile.from_intensities([0, 1, 4, 1, 0, 2, 0]))
        for x in (-0.1, 6.0, 6.5, 100.0):
            with pytest.raises(OutOfDomainError):
                spline.evaluate(x)

    def test_sweep_truncated_at_upper_bound(self) -> None:
        spline = SplineModel.build(Profile.from_intensities([0, 1, 4, 1, 0, 2, 0]))
        xs, ys = spline.sweep(1000)
        assert xs.size == 999
        assert ys.size == xs.size
        assert xs[0] == 0.0
        assert xs[-1] < 6.0
        assert np.all(np.diff(xs) > 0)

    def test_degenerate_knots_raise(self) -> None:
        with pytest.raises(DegenerateInputError):
            SplineModel(np.array([1.0, 1.0]), np.array([0.0, 1.0]))
        with pytest.raises(DegenerateInputError):
            SplineModel(np.array([0.0, 2.0, 1.0]), np.array([0.0, 1.0, 0.0]))

    def test_derivative_root_on_parabola(self, parabola_profile: Profile) -> None:
        spline = SplineModel.build(parabola_profile)
        root = spline.derivative_root_between(18.0, 22.0)
        assert root == pytest.approx(20.3, abs=1e-6)
        assert spline.derivative(root) == pytest.approx(0.0, abs=1e-6)
        assert spline.knots[-1] == 40.0

    def test_no_root_on_monotonic_signal(self) -> None:
        spline = SplineModel.build(Profile.from_intensities(np.arange(10, dtype=float) ** 2))
        with pytest.raises(NoRootInBracketError):
            spline.derivative_root_between(2.0, 6.0)

    def test_bracket_outside_knots_raises(self, parabola_profile: Profile) -> None:
        spline = SplineModel.build(parabola_profile)
        with pytest.raises(NoRootInBracketError):
            spline.derivative_root_between(-2.0, 2.0)


# ============================================================================
# PeakSelector
# ============================================================================


class TestPeakSelector:
    def test_two_isolated_peaks(self) -> None:
        profile = Profile.from_intensities([0, 1, 0, 0, 0, 1, 0])
        peaks = select(profile, 0.5)
        assert [p.index for p in peaks] == [1, 5]
        assert [p.amplitude for p in peaks] == [1.0, 1.0]
        assert [p.position for p in peaks] == [1.0, 5.0]

    def test_noise_tolerance_merges_shoulder(self) -> None:
        """A maximum whose saddle to a taller neighbour is shallower than the tolerance is dropped."""
        peaks = find_maxima(np.array([0.0, 1.0, 0.8, 1.1, 0.0]), np.arange(5.0), 0.5)
        assert [p.index for p in peaks] == [3]

    def test_prominence_must_strictly_exceed_threshold(self) -> None:
        peaks = find_maxima(np.array([0.0, 1.0, 0.0, 2.0, 0.0]), np.arange(5.0), 1.0)
        assert [p.index for p in peaks] == [3]

    def test_drop_tallest_is_default(self) -> None:
        profile = Profile.from_intensities([0, 5, 0, 3, 0, 4, 0, 2, 0])
        peaks = select(profile, 0.5)
        assert [p.index for p in peaks] == [3, 7]

    def test_keep_tallest_policy(self) -> None:
        profile = Profile.from_intensities([0, 5, 0, 3, 0, 4, 0, 2, 0])
        peaks = select(profile, 0.5, ReductionPolicy.KEEP_TALLEST)
        assert [p.index for p in peaks] == [1, 5]

    def test_never_more_than_two(self) -> None:
        rng = np.random.RandomState(3)
        for _ in range(20):
            profile = Profile.from_intensities(rng.uniform(0, 10, size=50))
            assert len(select(profile, 0.1)) <= 2

    def test_fewer_than_two_returned_unchanged(self) -> None:
        single = [PeakCandidate(index=4, position=4.0, amplitude=2.0)]
        assert reduce_to_two(single) == single
        assert reduce_to_two([]) == []

    def test_tallest_peak_beside_bright_edge(self) -> None:
        """The edge side never bounds a peak that has no taller neighbour there."""
        peaks = find_maxima(np.array([9.0, 10.0, 0, 0, 0, 5.0, 0, 0, 0]), np.arange(9.0), 2.0)
        assert [p.index for p in peaks] == [1, 5]
        assert peaks[0].prominence == pytest.approx(10.0)
        assert peaks[1].prominence == pytest.approx(5.0)

    def test_edge_samples_never_reported(self) -> None:
        peaks = find_maxima(np.array([6.0, 0, 0, 3.0, 0, 0, 7.0]), np.arange(7.0), 1.0)
        assert [p.index for p in peaks] == [3]

    def test_tie_drops_lowest_index(self) -> None:
        candidates = [
            PeakCandidate(index=1, position=1.0, amplitude=3.0),
            PeakCandidate(index=4, position=4.0, amplitude=3.0),
            PeakCandidate(index=7, position=7.0, amplitude=1.0),
        ]
        kept = reduce_to_two(candidates, ReductionPolicy.DROP_TALLEST)
        assert [c.index for c in kept] == [4, 7]


# ============================================================================
# SubpixelRefiner
# ============================================================================


class TestSubpixelRefiner:
    def test_parabola_vertex(self, parabola_profile: Profile) -> None:
        spline = SplineModel.build(parabola_profile)
        (seed,) = find_maxima(parabola_profile.intensities, parabola_profile.positions, 1.0)
        assert seed.index == 20
        refined = refine(parabola_profile, seed, spline, half_width=2)
        assert refined.seed_index == 20
        assert refined.subpixel_position == pytest.approx(20.3, abs=1e-6)

    def test_short_parabola_vertex(self) -> None:
        for n in (7, 9, 11, 15):
            x = np.arange(n, dtype=np.float64)
            vertex = (n - 1) / 2 + 0.3
            profile = Profile(positions=x, intensities=50.0 - (x - vertex) ** 2)
            seed = PeakCandidate(index=(n - 1) // 2, position=float((n - 1) // 2), amplitude=50.0)
            refined = refine(profile, seed, SplineModel.build(profile), half_width=2)
            assert refined.subpixel_position == pytest.approx(vertex, abs=1e-6)

    def test_window_out_of_bounds(self) -> None:
        profile = Profile.from_intensities([0, 1, 0, 0, 0, 1, 0])
        spline = SplineModel.build(profile)
        left = PeakCandidate(index=1, position=1.0, amplitude=1.0)
        right = PeakCandidate(index=5, position=5.0, amplitude=1.0)
        with pytest.raises(WindowOutOfBoundsError):
            refine(profile, left, spline, half_width=2)
        with pytest.raises(WindowOutOfBoundsError):
            refine(profile, right, spline, half_width=2)

    def test_window_touching_last_sample_is_valid(self) -> None:
        profile = Profile.from_intensities(_gaussians([4.2], [10.0], n=7, sigma=1.2))
        spline = SplineModel.build(profile)
        seed = PeakCandidate(index=4, position=4.0, amplitude=float(profile.intensities[4]))
        refined = refine(profile, seed, spline, half_width=2)
        assert 3.8 < refined.subpixel_position < 4.6


# ============================================================================
# SliceProcessor
# ============================================================================


class TestSliceProcessor:
    def test_reference_scenario_window_out_of_bounds(self) -> None:
        config = PeakGapConfig(calibration=0.5, min_amplitude=0.5, half_width=2)
        outcome = process_slice(1, Profile.from_intensities([0, 1, 0, 0, 0, 1, 0]), config)
        result = outcome.result
        assert [s.index for s in outcome.seeds] == [1, 5]
        assert result.status is SliceStatus.WINDOW_OUT_OF_BOUNDS
        assert result.raw_distance_px == 4.0
        assert result.raw_distance_physical == pytest.approx(4.0 * 0.5)
        assert math.isnan(result.subpixel_distance_px)
        assert math.isnan(result.subpixel_distance_physical)
        assert "exceeds profile bounds" in result.message

    def test_window_failure_reported_to_progress(self) -> None:
        messages = []
        config = PeakGapConfig(min_amplitude=0.5, half_width=2)
        process_slice(3, Profile.from_intensities([0, 1, 0, 0, 0, 1, 0]), config, progress_cb=messages.append)
        assert len(messages) == 1
        assert messages[0].startswith("slice 3:")
        assert "exceeds profile bounds" in messages[0]

    def test_ok_slice(self, two_peak_profile: Profile, default_config: PeakGapConfig) -> None:
        outcome = process_slice(1, two_peak_profile, default_config)
        result = outcome.result
        assert result.status is SliceStatus.OK
        assert result.raw_distance_px == 21.0
        assert result.subpixel_distance_px == pytest.approx(20.3, abs=0.05)
        assert result.subpixel_distance_physical == pytest.approx(result.subpixel_distance_px * 0.5)
        assert len(outcome.refined) == 2
        assert result.message == ""

    def test_distances_scale_with_calibration(self, two_peak_profile: Profile) -> None:
        base = process_slice(1, two_peak_profile, PeakGapConfig(calibration=1.0, min_amplitude=10.0)).result
        scaled = process_slice(1, two_peak_profile, PeakGapConfig(calibration=2.5, min_amplitude=10.0)).result
        assert scaled.raw_distance_px == base.raw_distance_px
        assert scaled.subpixel_distance_px == pytest.approx(base.subpixel_distance_px)
        assert scaled.raw_distance_physical == pytest.approx(2.5 * base.raw_distance_physical)
        assert scaled.subpixel_distance_physical == pytest.approx(2.5 * base.subpixel_distance_physical)

    def test_distance_independent_of_position_offset(self, two_peak_profile: Profile) -> None:
        shifted = Profile(positions=two_peak_profile.positions + 100.0, intensities=two_peak_profile.intensities)
        config = PeakGapConfig(calibration=1.0, min_amplitude=10.0)
        a = process_slice(1, two_peak_profile, config).result
        b = process_slice(1, shifted, config).result
        assert b.subpixel_distance_px == pytest.approx(a.subpixel_distance_px, abs=1e-6)

    def test_insufficient_peaks_warns_and_skips(
        self, one_peak_profile: Profile, default_config: PeakGapConfig
    ) -> None:
        warnings: list[str] = []
        outcome = process_slice(3, one_peak_profile, default_config, warnings)
        assert outcome.result.status is SliceStatus.INSUFFICIENT_PEAKS
        assert math.isnan(outcome.result.raw_distance_px)
        assert outcome.diagnostics.spline_x.size == 0
        assert len(warnings) == 1 and "slice 3" in warnings[0]

    def test_insufficient_peaks_fail_fast(self, one_peak_profile: Profile) -> None:
        config = PeakGapConfig(min_amplitude=10.0, fail_fast=True)
        with pytest.raises(InsufficientPeaksError) as excinfo:
            process_slice(2, one_peak_profile, config)
        assert excinfo.value.slice_index == 2
        assert excinfo.value.n_found == 1

    def test_diagnostics_are_plain_coordinates(
        self, two_peak_profile: Profile, default_config: PeakGapConfig
    ) -> None:
        diag = process_slice(1, two_peak_profile, default_config).diagnostics
        assert diag.spline_x.size == default_config.sweep_points - 1
        assert diag.spline_x.shape == diag.spline_y.shape
        assert list(diag.seed_positions) == [20.0, 41.0]
        assert diag.refined_positions.size == 2
        assert np.all(diag.refined_values > 70.0)

    def test_no_root_reported_as_window_failure(
        self, monkeypatch, two_peak_profile: Profile, default_config: PeakGapConfig
    ) -> None:
        import peakgap.slices as slices

        real_refine = slices.refine

        def flaky_refine(profile, candidate, spline, half_width):
            if candidate.index == 41:
                raise NoRootInBracketError(39.0, 43.0)
            return real_refine(profile, candidate, spline, half_width)

        monkeypatch.setattr(slices, "refine", flaky_refine)
        outcome = process_slice(1, two_peak_profile, default_config)
        assert outcome.result.status is SliceStatus.WINDOW_OUT_OF_BOUNDS
        assert outcome.result.raw_distance_px == 21.0
        assert math.isnan(outcome.result.subpixel_distance_px)
        assert "no derivative root" in outcome.result.message
        assert len(outcome.refined) == 1


# ============================================================================
# SeriesAggregator
# ============================================================================


class TestSeriesAggregator:
    def test_three_slices_with_deficient_middle(
        self, two_peak_profile: Profile, one_peak_profile: Profile, default_config: PeakGapConfig
    ) -> None:
        run = run_series([two_peak_profile, one_peak_profile, two_peak_profile], default_config)
        bundle = run.bundle
        assert len(bundle) == 3
        assert bundle.statuses == [SliceStatus.OK, SliceStatus.INSUFFICIENT_PEAKS, SliceStatus.OK]
        assert math.isnan(bundle.raw_distances[1])
        assert math.isnan(bundle.subpixel_distances[1])
        assert not np.isnan(bundle.subpixel_distances[[0, 2]]).any()
        assert list(bundle.timestamps) == [1.0, 2.0, 3.0]
        assert len(run.warnings) == 1

    def test_timestamps_are_kept_aligned(
        self, two_peak_profile: Profile, default_config: PeakGapConfig
    ) -> None:
        run = run_series([two_peak_profile] * 2, default_config, timestamps=[0.0, 0.25])
        assert list(run.bundle.timestamps) == [0.0, 0.25]

    def test_timestamps_alongside_aggregator_rejected(
        self, two_peak_profile: Profile, default_config: PeakGapConfig
    ) -> None:
        with pytest.raises(ValueError):
            run_series(
                [two_peak_profile] * 2,
                default_config,
                timestamps=[0.0, 0.5],
                aggregator=SeriesAggregator(),
            )

    def test_aggregator_reused_across_runs(
        self, two_peak_profile: Profile, one_peak_profile: Profile, default_config: PeakGapConfig
    ) -> None:
        aggregator = SeriesAggregator(timestamps=[0.0, 0.5, 1.0])
        run_series([two_peak_profile], default_config, aggregator=aggregator)
        run = run_series([one_peak_profile, two_peak_profile], default_config, aggregator=aggregator)
        assert [r.slice_index for r in aggregator.results] == [1, 2, 3]
        assert [o.result.slice_index for o in run.outcomes] == [2, 3]
        assert list(run.bundle.timestamps) == [0.0, 0.5, 1.0]
        assert run.bundle.statuses == [SliceStatus.OK, SliceStatus.INSUFFICIENT_PEAKS, SliceStatus.OK]

    def test_fail_fast_aborts_run(self, two_peak_profile: Profile, one_peak_profile: Profile) -> None:
        config = PeakGapConfig(min_amplitude=10.0, fail_fast=True)
        with pytest.raises(InsufficientPeaksError):
            run_series([two_peak_profile, one_peak_profile, two_peak_profile], config)

    def test_raw_arrays_accepted(self, default_config: PeakGapConfig) -> None:
        run = run_series([_gaussians([20.4, 40.7], [100.0, 80.0])], default_config)
        assert run.bundle.statuses == [SliceStatus.OK]

    def test_out_of_order_record_rejected(self) -> None:
        aggregator = SeriesAggregator()
        with pytest.raises(ValueError):
            aggregator.record(2, SliceResult(slice_index=2, status=SliceStatus.OK))

    def test_mismatched_result_rejected(self) -> None:
        aggregator = SeriesAggregator()
        with pytest.raises(ValueError):
            aggregator.record(1, SliceResult(slice_index=5, status=SliceStatus.OK))

    def test_short_timestamps_rejected(self) -> None:
        aggregator = SeriesAggregator(timestamps=[0.0])
        aggregator.record(1, SliceResult(slice_index=1, status=SliceStatus.INSUFFICIENT_PEAKS))
        aggregator.record(2, SliceResult(slice_index=2, status=SliceStatus.INSUFFICIENT_PEAKS))
        with pytest.raises(ValueError):
            aggregator.finalize()

    def test_summary_counts(self, two_peak_profile: Profile, one_peak_profile: Profile, default_config) -> None:
        run = run_series([two_peak_profile, one_peak_profile], default_config)
        summary = run.summary_dict()
        assert summary["n_slices"] == 2
        assert summary["status_counts"]["OK"] == 1
        assert summary["status_counts"]["INSUFFICIENT_PEAKS"] == 1
        assert summary["mean_subpixel_distance"] == pytest.approx(run.bundle.subpixel_distances[0])

    def test_degenerate_profile_is_fatal(self, default_config: PeakGapConfig) -> None:
        with pytest.raises(DegenerateInputError):
            run_series([[1.0]], default_config)


class TestConfig:
    def test_invalid_calibration(self) -> None:
        with pytest.raises(ValueError):
            PeakGapConfig(calibration=0.0).validate()

    def test_invalid_half_width(self) -> None:
        with pytest.raises(ValueError):
            PeakGapConfig(half_width=0).validate()

    def test_policy_string_normalized(self) -> None:
        config = PeakGapConfig(reduction_policy="keep_tallest").validate()
        assert config.reduction_policy is ReductionPolicy.KEEP_TALLEST


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
