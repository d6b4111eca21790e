"""对图像栈逐帧测量双峰间距，打印汇总表并导出 CSV。

用法示例：
    python scripts/measure_stack.py --stack data_samples/stack.tif --config config/default_config.json --csv analysis_results/distances.csv
"""
from __future__ import annotations

import argparse
import math
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.services.analysis_service import AnalysisService, export_csv, load_config_from_file  # noqa: E402
from peakgap.errors import InsufficientPeaksError  # noqa: E402

console = Console()


def _fmt(value: float) -> str:
    return "-" if math.isnan(value) else f"{value:.4f}"


def main() -> None:
    parser = argparse.ArgumentParser(description="Measure the sub-pixel distance between two peaks per slice")
    parser.add_argument("--stack", required=True, type=Path, help="Path to (multi-page) image stack")
    parser.add_argument("--config", required=True, type=Path, help="Path to analysis config JSON")
    parser.add_argument("--csv", type=Path, default=None, help="Where to write the per-slice series")
    parser.add_argument("--fail-fast", action="store_true", help="Abort on the first slice with fewer than two peaks")
    args = parser.parse_args()

    config = load_config_from_file(args.config)
    if args.fail_fast:
        config.peaks.fail_fast = True
    service = AnalysisService(config)
    stack = service.load_stack(args.stack)
    console.print(f"[bold blue]Loaded {stack.shape[0]} slices from {args.stack.name}[/bold blue]")

    try:
        result = service.run(stack)
    except InsufficientPeaksError as exc:
        console.print(f"[red]Aborted: {exc}[/red]")
        raise SystemExit(1) from exc

    bundle = result.bundle
    table = Table(title=f"Peak distance ({config.unit})")
    table.add_column("slice", justify="right")
    table.add_column(f"time [{config.timing.unit}]", justify="right")
    table.add_column("raw", justify="right")
    table.add_column("sub-pixel", justify="right")
    table.add_column("status")
    for row in bundle.to_rows():
        style = "green" if row["status"] == "OK" else "yellow"
        table.add_row(
            str(row["slice"]),
            f"{row['time']:.3f}",
            _fmt(row["raw_distance"]),
            _fmt(row["subpixel_distance"]),
            f"[{style}]{row['status']}[/{style}]",
        )
    console.print(table)
    console.print(result.summary_dict())

    if args.csv is not None:
        path = export_csv(bundle, args.csv)
        console.print(f"[bold green]Series saved to {path}[/bold green]")


if __name__ == "__main__":
    main()
