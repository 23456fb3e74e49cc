"""Pool state and its on-disk record: state.json and history.csv."""

from __future__ import annotations

import csv
import json
import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .core import PDMConfig, StepTrace

log = logging.getLogger(__name__)

HISTORY_LIMIT = 365
DEFAULT_DATA_DIR = "./data"
CSV_HEADER = ("timestamp", "oi", "v_total", "s_prev", "s_new",
              "l_ratio", "clamped_s", "clamped_cap", "error")


def _lookup(data: Mapping[str, Any], name: str) -> Any:
    """Exact key first, then any key equal to ``name`` ignoring case."""
    if name in data:
        return data[name]
    return next((v for k, v in data.items()
                 if isinstance(k, str) and k.lower() == name.lower()), None)


def _fixed(value: float, digits: int) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return f"{value:.{digits}f}"


@dataclass
class PoolState:
    """Current supply, capacity, tuning and the recent step history."""

    s: float
    mcap: float
    config: PDMConfig
    history: list[StepTrace] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "S": self.s,
            "MCap": self.mcap,
            "Config": self.config.to_dict(),
            "history": [trace.to_dict() for trace in self.history],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PoolState":
        return cls(
            s=float(_lookup(data, "S") or 0.0),
            mcap=float(_lookup(data, "MCap") or 0.0),
            config=PDMConfig.from_dict(_lookup(data, "Config") or {}),
            history=[StepTrace.from_dict(item) for item in _lookup(data, "history") or []],
        )

    def latest(self) -> StepTrace | None:
        """The most recent trace, or None before the first step."""
        return self.history[-1] if self.history else None

    def record(self, trace: StepTrace) -> None:
        """Append a trace, keeping only the newest ``HISTORY_LIMIT``."""
        self.history.append(trace)
        del self.history[:-HISTORY_LIMIT]


class StateStore:
    """Files under a data directory holding the pool state and step log."""

    def __init__(self, data_dir: str | Path = DEFAULT_DATA_DIR) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.state_path = self.data_dir / "state.json"
        self.temp_path = self.data_dir / "state.json.tmp"
        self.csv_path = self.data_dir / "history.csv"

    def load(self) -> PoolState | None:
        """The saved state, or None when there is none or it is unreadable."""
        try:
            state = PoolState.from_dict(json.loads(self.state_path.read_bytes()))
        except (OSError, ValueError, TypeError, AttributeError):
            log.info("No existing state – will bootstrap from config")
            return None
        log.info("Loaded state: S=%.2f, History=%d entries", state.s, len(state.history))
        return state

    def save(self, state: PoolState) -> None:
        """Write state.json atomically through a temporary file."""
        self.temp_path.write_text(
            json.dumps(state.to_dict(), separators=(",", ":")), encoding="utf-8"
        )
        os.replace(self.temp_path, self.state_path)

    def append_history_csv(self, trace: StepTrace) -> None:
        """Append one row to history.csv, writing the header to a new file."""
        write_header = not self.csv_path.exists() or self.csv_path.stat().st_size == 0
        ts = trace.timestamp
        with self.csv_path.open("a", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh, lineterminator="\n")
            if write_header:
                writer.writerow(CSV_HEADER)
            writer.writerow((
                f"{ts.year:04d}-{ts.month:02d}-{ts.day:02d} "
                f"{ts.hour:02d}:{ts.minute:02d}:{ts.second:02d}",
                _fixed(trace.oi, 6),
                _fixed(trace.vtotal, 6),
                _fixed(trace.s_prev, 6),
                _fixed(trace.s_new, 6),
                _fixed(trace.l, 4),
                str(trace.clamped_s).lower(),
                str(trace.clamped_cap).lower(),
                trace.error,
            ))

    def persist(self, state: PoolState, trace: StepTrace) -> None:
        """Record a step in memory and on disk; disk failures are logged."""
        state.record(trace)
        try:
            self.append_history_csv(trace)
        except OSError as exc:
            log.error("CSV persist error: %s", exc)
        try:
            self.save(state)
        except OSError as exc:
            log.error("State JSON save error: %s", exc)