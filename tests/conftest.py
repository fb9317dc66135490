import json
from pathlib import Path
from typing import Any, Callable

import pytest
from prometheus_client import CollectorRegistry


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def write_jsonl(tmp_path: "Path") -> "Callable[[str, list[Any]], Path]":
    """
    writes records as a JSONL file below tmp_path. Strings are
    written verbatim so tests can inject malformed lines.
    """

    def _write(relpath: "str", records: "list[Any]") -> "Path":
        path = tmp_path / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write
