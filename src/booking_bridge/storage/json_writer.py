"""JSON report persistence for discovery runs and import results."""
from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def timestamped_filename(prefix: str, *, suffix: str = ".json", now: Optional[datetime] = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"{_UNSAFE.sub('_', prefix)}_{moment.strftime('%Y%m%dT%H%M%SZ')}{suffix}"


def _serialise(item: Any) -> Any:
    to_dict = getattr(item, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return item


class JsonStore:
    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    async def write(
        self,
        data: Iterable[Any],
        *,
        filename: str,
        subdir: str | None = None,
        meta: Optional[Mapping[str, object]] = None,
    ) -> Path:
        """Write ``data`` inside a ``{generated_at, meta, items}`` envelope and return the path."""
        target_dir = self.root / subdir if subdir else self.root
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / filename
        envelope = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "meta": dict(meta or {}),
            "items": [_serialise(item) for item in data],
        }
        path.write_text(json.dumps(envelope, indent=2, default=str), encoding="utf-8")
        return path
