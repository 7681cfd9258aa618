from __future__ import annotations

import json
import logging
import sys
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Deque, Dict, List, Mapping, Optional

REDACTED = "<redacted>"
_SENSITIVE_HEADERS = {"authorization", "x-requestdigest"}


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of ``headers`` safe to write to logs."""
    return {
        name: REDACTED if name.lower() in _SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


@dataclass
class AuditEvent:
    timestamp: str
    level: str
    message: str
    tenant_id: Optional[str] = None
    correlation_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "level": self.level,
            "message": self.message,
            "tenant_id": self.tenant_id,
            "correlation_id": self.correlation_id,
            "extra": self.extra,
        }


class InMemoryAuditStore:
    """Thread-safe audit event buffer, newest first, read by the web surface."""

    def __init__(self, max_events: int = 1000):
        self._events: Deque[AuditEvent] = deque(maxlen=max_events)
        self._lock = Lock()

    def append(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.appendleft(event)

    def list(self, limit: int = 100) -> List[AuditEvent]:
        with self._lock:
            return list(self._events)[:limit]


class JsonAuditLogger:
    """Structured logger for audit and operational events.

    Logs one JSON object per line and optionally mirrors events to an
    in-memory store. DEBUG events (request and response dumps) are emitted only
    by instances created with ``verbose=True``.

    Instances sharing a ``name`` share one stdlib logger and its single JSON
    handler; passing ``stream`` points that handler at the new stream. The
    verbosity threshold belongs to the instance.
    """

    def __init__(
        self,
        name: str = "spo_control_plane",
        verbose: bool = False,
        store: Optional[InMemoryAuditStore] = None,
        stream: Any = None,
    ):
        self.logger = logging.getLogger(name)
        if not self.logger.handlers:
            handler = logging.StreamHandler(stream or sys.stderr)
            handler.setFormatter(_JsonFormatter())
            self.logger.addHandler(handler)
        elif stream is not None:
            for handler in self.logger.handlers:
                if isinstance(handler, logging.StreamHandler):
                    handler.setStream(stream)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        self.level = logging.DEBUG if verbose else logging.INFO
        self.store = store

    def _log(self, level: int, message: str, **kwargs: Any) -> None:
        if level < self.level:
            return
        event = self._build_event(level, message, **kwargs)
        if self.store:
            self.store.append(event)
        self.logger.log(level, message, extra={"extra": kwargs})

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, **kwargs)

    def _build_event(self, level: int, message: str, **kwargs: Any) -> AuditEvent:
        return AuditEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=logging.getLevelName(level),
            message=message,
            tenant_id=kwargs.get("tenant_id"),
            correlation_id=kwargs.get("correlation_id"),
            extra={k: v for k, v in kwargs.items() if k not in {"tenant_id", "correlation_id"}},
        )


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }

        extra: Optional[Dict[str, Any]] = getattr(record, "extra", None)  # type: ignore[attr-defined]
        if extra:
            payload.update(extra)

        return json.dumps(payload, default=str)
