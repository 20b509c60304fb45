from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from .context import CrawlContext

logger = logging.getLogger(__name__)


@dataclass
class SessionStore:
    """Keeps one serialized :class:`CrawlContext` in ``state_dir/session.json``."""

    state_dir: Path

    def __post_init__(self) -> None:
        self.state_dir = Path(self.state_dir)
        self.session_path = self.state_dir / "session.json"

    def exists(self) -> bool:
        return self.session_path.exists()

    def save(self, context: CrawlContext) -> Path:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.session_path.with_suffix(".json.tmp")
        tmp.write_text(
            json.dumps(context.serialize(), indent=2, ensure_ascii=False),
            encoding="utf-8",
            newline="\n",
        )
        tmp.replace(self.session_path)
        return self.session_path

    def load(self) -> CrawlContext | None:
        if not self.session_path.exists():
            return None
        data = json.loads(self.session_path.read_text(encoding="utf-8"))
        context = CrawlContext.deserialize(data)
        logger.debug(
            "Restored session with %d cookies from %s",
            len(context.get_all_cookies()),
            self.session_path,
        )
        return context

    def clear(self) -> None:
        self.session_path.unlink(missing_ok=True)
