"""Append-only output sink writing one JSON record per line."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol


class OutputSink(Protocol):
    def emit(self, record: Dict[str, Any]) -> None: ...


class DatasetSink:
    """Writes records to a JSON Lines file; never rewrites earlier lines."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.count = 0

    def emit(self, record: Dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False, default=str)
        with open(self.path, "a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        self.count += 1


class TransformingSink:
    """Passes each record through ``transform`` before it reaches ``inner``.

    A transform returning ``None`` drops the record.
    """

    def __init__(self, inner: OutputSink, transform: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]) -> None:
        self.inner = inner
        self.transform = transform

    def emit(self, record: Dict[str, Any]) -> None:
        result = self.transform(record)
        if result is not None:
            self.inner.emit(result)
