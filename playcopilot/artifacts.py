import json
import os
import secrets
from datetime import datetime, timezone
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

from pydantic import BaseModel


def make_timestamp() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    return f"{timestamp}_{os.getpid()}_{secrets.token_hex(3)}"


def ensure_runs_dir(path: str = "runs") -> Path:
    runs = Path(path)
    runs.mkdir(parents=True, exist_ok=True)
    return runs


def _as_dict(value: dict[str, Any] | BaseModel) -> dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def _atomic_write(path: Path, content: str) -> None:
    with NamedTemporaryFile("w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", delete=False) as tmp_file:
        tmp_path = Path(tmp_file.name)
        try:
            tmp_file.write(content)
        except OSError:
            tmp_file.close()
            tmp_path.unlink(missing_ok=True)
            raise
    os.replace(tmp_path, path)


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def save_run(
    tool_name: str,
    raw: str,
    payload: dict[str, Any],
    trace: dict[str, Any] | BaseModel,
    runs_dir: str = "runs",
) -> dict[str, str]:
    runs = ensure_runs_dir(runs_dir)
    ts = make_timestamp()

    raw_path = runs / f"{tool_name}_raw_{ts}.txt"
    payload_path = runs / f"{tool_name}_{ts}.json"
    trace_path = runs / f"{tool_name}_trace_{ts}.json"

    _atomic_write(raw_path, raw)
    _atomic_write(payload_path, _dumps(payload))
    _atomic_write(trace_path, _dumps(_as_dict(trace)))

    return {
        "raw_path": str(raw_path),
        "payload_path": str(payload_path),
        "trace_path": str(trace_path),
    }


def save_upstream_error(tool_name: str, error: str, kind: str, runs_dir: str = "runs") -> str:
    err_path = ensure_runs_dir(runs_dir) / f"upstream_error_{make_timestamp()}.txt"

    contents = (
        f"UPSTREAM_FAILURE\n"
        f"tool: {tool_name}\n"
        f"kind: {kind}\n"
        f"error: {error}\n"
    )
    _atomic_write(err_path, contents)
    return str(err_path)
