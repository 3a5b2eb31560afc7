from __future__ import annotations

import asyncio
import json
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from wikimirror.config.logger_config import logger

DEFAULT_MAX_BYTES = 64 * 1024 * 1024


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ApiCallEvent:
    """One attempt of one action API request, as journaled."""

    operation: str
    attempt: int
    outcome: str
    url: str
    params: dict[str, Any]
    started_at: str
    finished_at: str
    title: str | None = None
    http: dict[str, Any] | None = None
    continue_token: dict[str, Any] | None = None
    response_json: Any = None
    response_text: str | None = None
    error: dict[str, str] | None = None

    @classmethod
    def attempt_of(
        cls,
        *,
        operation: str,
        attempt: int,
        url: str,
        params: dict[str, Any],
        started_at: str,
        outcome: str,
        title: str | None = None,
        http: dict[str, Any] | None = None,
        response_json: Any = None,
        response_text: str | None = None,
        error: BaseException | None = None,
    ) -> ApiCallEvent:
        cont = response_json.get("continue") if isinstance(response_json, dict) else None
        return cls(
            operation=operation,
            attempt=attempt,
            outcome=outcome,
            url=url,
            params=dict(params),
            started_at=started_at,
            finished_at=utc_now_iso(),
            title=title,
            http=http,
            continue_token=cont if isinstance(cont, dict) else None,
            response_json=response_json,
            response_text=response_text,
            error={"type": type(error).__name__, "message": str(error)} if error else None,
        )

    def to_record(self, run_id: str) -> dict[str, Any]:
        return {
            "run_id": run_id,
            "operation": self.operation,
            "title": self.title,
            "attempt": self.attempt,
            "outcome": self.outcome,
            "request": {"url": self.url, "params": self.params},
            "http": self.http,
            "continue_token": self.continue_token,
            "response_json": self.response_json,
            "response_text": self.response_text,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class ApiCallLog:
    """JSONL journal of the API calls made during one mirror run.

    Records go to ``api_calls_<run_id>.jsonl``; once a file passes ``max_bytes``
    the journal continues in ``api_calls_<run_id>.<n>.jsonl``. Outcomes are
    tallied per run and logged on close. Usable as a context manager.
    """

    def __init__(self, output_dir: str | Path, run_id: str, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id
        self.max_bytes = max_bytes
        self.outcomes: Counter[str] = Counter()
        self.files: list[Path] = []
        self._lock = asyncio.Lock()
        self._handle: IO[str] | None = None
        self._written = 0
        self._closed = False
        self._open_next()

    @property
    def file_path(self) -> Path:
        return self.files[-1]

    async def record(self, event: ApiCallEvent) -> None:
        line = json.dumps(event.to_record(self.run_id), ensure_ascii=False, default=str) + "\n"
        async with self._lock:
            if self._closed or self._handle is None:
                raise RuntimeError(f"API call log for run {self.run_id} is closed.")
            if self._written and self._written + len(line.encode("utf-8")) > self.max_bytes:
                self._handle.close()
                self._open_next()
            self._handle.write(line)
            self._handle.flush()
            self._written += len(line.encode("utf-8"))
            self.outcomes[event.outcome] += 1

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "calls": sum(self.outcomes.values()),
            "outcomes": dict(self.outcomes),
            "files": [str(p) for p in self.files],
        }

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        logger.info("API call log closed: {}", self.summary())

    def __enter__(self) -> ApiCallLog:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _open_next(self) -> None:
        index = len(self.files)
        suffix = f".{index}" if index else ""
        path = self.output_dir / f"api_calls_{self.run_id}{suffix}.jsonl"
        self._handle = path.open("a", encoding="utf-8")
        self._written = path.stat().st_size
        self.files.append(path)
