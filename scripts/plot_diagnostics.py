"""诊断图渲染：每帧绘制样条曲线、种子峰与亚像素峰，合成多页 TIFF；另外输出距离-时间曲线。

用法示例：
    python scripts/plot_diagnostics.py --stack data_samples/stack.tif --config config/default_config.json

产物：
- analysis_results/diagnostics_stack.tif：逐帧诊断图（帧序与输入一致）；
- analysis_results/distance_vs_time.png：原始距离与亚像素距离随时间的变化。
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
from PIL import Image  # noqa: E402
from rich.console import Console  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.services.analysis_service import AnalysisService, load_config_from_file  # noqa: E402
from peakgap.models import Profile, SeriesBundle, SliceOutcome, SliceStatus  # noqa: E402

console = Console()
OUTPUT_DIR = PROJECT_ROOT / "analysis_results"


def render_slice(profile: Profile, outcome: SliceOutcome) -> Image.Image:
    diag = outcome.diagnostics
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.plot(profile.positions, profile.intensities, "o", ms=3, color="gray", label="samples")
    if diag.spline_x.size:
        ax.plot(diag.spline_x, diag.spline_y, "-", color="steelblue", lw=1, label="spline")
    if diag.seed_positions.size:
        ax.plot(diag.seed_positions, diag.seed_intensities, "v", color="orange", label="seed peaks")
    if diag.refined_positions.size:
        ax.plot(diag.refined_positions, diag.refined_values, "x", color="red", ms=8, label="refined")
    result = outcome.result
    ax.set_title(f"slice {result.slice_index}: {result.status.value}")
    ax.set_xlabel("Position along line (px)")
    ax.set_ylabel("Intensity")
    ax.legend(loc="upper right", fontsize=8)
    fig.tight_layout()
    fig.canvas.draw()
    rgba = np.asarray(fig.canvas.buffer_rgba())
    plt.close(fig)
    return Image.fromarray(rgba[..., :3].copy())


def save_stack(images: List[Image.Image], path: Path) -> None:
    if not images:
        return
    images[0].save(path, save_all=True, append_images=images[1:])


def plot_series(bundle: SeriesBundle, unit: str, time_unit: str, path: Path) -> None:
    ok = np.array([s is SliceStatus.OK for s in bundle.statuses], dtype=bool)
    plt.figure(figsize=(8, 4))
    plt.plot(bundle.timestamps, bundle.raw_distances, "s", ms=4, alpha=0.6, label="raw")
    plt.plot(bundle.timestamps, bundle.subpixel_distances, "-o", ms=3, label="sub-pixel")
    if (~ok).any():
        for t in bundle.timestamps[~ok]:
            plt.axvline(t, color="red", alpha=0.15)
    plt.xlabel(f"Time ({time_unit})")
    plt.ylabel(f"Peak distance ({unit})")
    plt.title("Two-peak distance over time")
    plt.legend()
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(path, dpi=150)
    plt.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Render per-slice diagnostics for the two-peak distance")
    parser.add_argument("--stack", required=True, type=Path, help="Path to (multi-page) image stack")
    parser.add_argument("--config", required=True, type=Path, help="Path to analysis config JSON")
    parser.add_argument("--out", type=Path, default=OUTPUT_DIR, help="Output directory")
    args = parser.parse_args()

    config = load_config_from_file(args.config)
    service = AnalysisService(config)
    stack = service.load_stack(args.stack)
    profiles = service.profiles(stack)
    result = service.run_profiles(profiles)

    args.out.mkdir(parents=True, exist_ok=True)
    images = [render_slice(p, o) for p, o in zip(profiles, result.outcomes)]
    stack_path = args.out / "diagnostics_stack.tif"
    save_stack(images, stack_path)
    console.print(f"[bold green]Diagnostic stack saved to {stack_path}[/bold green]")

    series_path = args.out / "distance_vs_time.png"
    plot_series(result.bundle, config.unit, config.timing.unit, series_path)
    console.print(f"[bold green]Plot saved to {series_path}[/bold green]")
    for warning in result.warnings:
        console.print(f"[yellow]{warning}[/yellow]")


if __name__ == "__main__":
    main()
