from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass(frozen=True, slots=True)
class MetricsRecord:
    ts: str
    tenant_id: str
    auth_id: str | None
    metrics: dict[str, float]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoryMetricsSink:
    def __init__(self) -> None:
        self.records: list[MetricsRecord] = []

    def record(
        self, tenant_id: str, auth_id: str | None, metrics: dict[str, float]
    ) -> None:
        self.records.append(
            MetricsRecord(
                ts=_utc_now(), tenant_id=tenant_id, auth_id=auth_id, metrics=dict(metrics)
            )
        )


class JsonlMetricsSink:
    """Append one JSON line per dispatch to ``path``."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def record(
        self, tenant_id: str, auth_id: str | None, metrics: dict[str, float]
    ) -> None:
        payload = asdict(
            MetricsRecord(
                ts=_utc_now(), tenant_id=tenant_id, auth_id=auth_id, metrics=dict(metrics)
            )
        )
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, default=str) + "\n")


def read_metrics_jsonl(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    records: list[dict[str, Any]] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return records
