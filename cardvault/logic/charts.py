"""Chart generation utilities."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd
from matplotlib.ticker import FuncFormatter
from sqlalchemy.engine import Engine

from cardvault.logic.analytics import recent_snapshots
from cardvault.utils.dates import format_date

plt.switch_backend("Agg")

OUTPUT_DIR = Path(os.environ.get("CHART_OUTPUT_DIR", "artifacts/charts"))


@dataclass(slots=True)
class ChartResult:
    name: str
    path: Path


def store_value_chart(engine: Engine, limit: int = 30) -> ChartResult:
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    frame = pd.DataFrame(recent_snapshots(engine, limit), columns=["id", "value", "created_at"])
    if frame.empty:
        raise ValueError("No store value snapshots to chart")
    frame["created_at"] = pd.to_datetime(frame["created_at"])
    frame_sorted = frame.sort_values("created_at")
    start_date = frame_sorted["created_at"].min().date()
    end_date = frame_sorted["created_at"].max().date()

    fig, ax = plt.subplots(figsize=(8, 4))
    ax.plot(frame_sorted["created_at"], frame_sorted["value"], color="#2F55D4", marker="o")
    ax.fill_between(frame_sorted["created_at"], frame_sorted["value"], alpha=0.1, color="#2F55D4")
    ax.set_ylabel("Store value")
    ax.yaxis.set_major_formatter(FuncFormatter(lambda x, pos: f"${x:,.0f}"))
    ax.set_title(f"Store value {format_date(start_date)} to {format_date(end_date)}")
    fig.autofmt_xdate()

    output_path = OUTPUT_DIR / f"store-value-{format_date(end_date)}.png"
    fig.tight_layout()
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    return ChartResult(name="store-value", path=output_path)
