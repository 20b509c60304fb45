"""On-disk record of a discovery run.

``<name>.jsonl`` gets one ``discovered`` event per URL as it is accepted;
``<name>.json`` is written once at the end with totals per source and per
pattern plus whatever component stats the caller passes in.
"""

from __future__ import annotations

import json
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .discovery import DiscoveredUrl


def utc_iso(ts: float | None = None) -> str:
    return time.strftime(
        "%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time() if ts is None else ts)
    )


@dataclass
class DiscoveryManifest:
    out_dir: Path
    base_url: str
    name: str = "discover"
    started_at: str = field(default_factory=utc_iso)
    by_source: Counter[str] = field(default_factory=Counter)
    by_pattern: Counter[str] = field(default_factory=Counter)

    @property
    def events_path(self) -> Path:
        return self.out_dir / f"{self.name}.jsonl"

    @property
    def summary_path(self) -> Path:
        return self.out_dir / f"{self.name}.json"

    @property
    def total(self) -> int:
        return sum(self.by_source.values())

    def record(self, item: DiscoveredUrl) -> None:
        self.by_source[item.source] += 1
        self.by_pattern[item.pattern or "(none)"] += 1

        event = {"event": "discovered", "at": utc_iso(), **item.to_dict()}
        self.out_dir.mkdir(parents=True, exist_ok=True)
        with self.events_path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")

    def finish(self, **component_stats: Any) -> dict[str, Any]:
        summary = {
            "base_url": self.base_url,
            "started_at": self.started_at,
            "finished_at": utc_iso(),
            "urls": self.total,
            "by_source": dict(self.by_source),
            "by_pattern": dict(self.by_pattern),
            **component_stats,
        }
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.summary_path.write_text(
            json.dumps(summary, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        return summary
