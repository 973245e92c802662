from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from barsim.settings import get_optimizer_settings

DEFAULT_MANIFEST_PATH = Path("artifacts/sweeps/jobs_manifest.jsonl")

_write_lock = threading.Lock()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def manifest_path() -> Path:
    return get_optimizer_settings().registry_path or DEFAULT_MANIFEST_PATH


def _append_record(record: Dict[str, object], path: Optional[Path] = None) -> None:
    target = path or manifest_path()
    with _write_lock:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, default=str) + "\n")


def record_job_event(job_id: str, status: str, *, path: Optional[Path] = None, **payload: object) -> None:
    data = {
        "job_id": job_id,
        "status": status,
        "ts": _utcnow().isoformat(),
    }
    data.update(payload)
    _append_record(data, path)


def load_jobs(limit: int = 50, *, path: Optional[Path] = None) -> List[Dict[str, object]]:
    target = path or manifest_path()
    if not target.exists():
        return []
    records: List[Dict[str, object]] = []
    with target.open(encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    records.sort(key=lambda r: r.get("ts", ""), reverse=True)
    return records[:limit]


__all__ = ["record_job_event", "load_jobs", "manifest_path", "DEFAULT_MANIFEST_PATH"]
