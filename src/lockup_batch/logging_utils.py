"""
Logging utilities for the proposal pipeline.

Features:
- Per-stage context with timing and outcome
- Address masking for log output
- One-call logging setup for the CLI
"""
from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


def mask_address(address: str) -> str:
    """Mask middle portion of address for privacy."""
    if not address or len(address) < 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


@dataclass
class StageContext:
    """Context for one pipeline stage."""
    stage: str
    run_id: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        """Mark stage as complete."""
        self.completed_at = datetime.now(timezone.utc)
        self.duration_ms = (
            (self.completed_at - self.started_at).total_seconds() * 1000
        )
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "stage": self.stage,
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


class StageLogger:
    """Logs the lifecycle of each pipeline stage for one run."""

    def __init__(self, run_id: Optional[str] = None, name: str = "lockup_batch.pipeline"):
        self.run_id = run_id or f"run_{int(time.time() * 1000)}"
        self._logger = logging.getLogger(name)
        self.history: List[StageContext] = []

    @staticmethod
    def _format(data: Dict[str, Any]) -> str:
        return json.dumps(data, default=str)

    @contextmanager
    def stage(self, name: str, **metadata: Any) -> Iterator[StageContext]:
        """Run a block as a named stage; failures are logged and re-raised."""
        ctx = StageContext(stage=name, run_id=self.run_id, metadata=dict(metadata))
        self.history.append(ctx)
        self._logger.debug(f"Stage started: {self._format(ctx.to_dict())}")
        try:
            yield ctx
        except Exception as e:
            ctx.complete(success=False, error=str(e))
            self._logger.error(f"Stage failed: {self._format(ctx.to_dict())}")
            raise
        ctx.complete(success=True)
        self._logger.info(
            f"Stage {name} completed in {ctx.duration_ms:.1f}ms"
            + (f" {self._format(ctx.metadata)}" if ctx.metadata else "")
        )

    def failed_stage(self) -> Optional[str]:
        for ctx in self.history:
            if ctx.completed_at is not None and not ctx.success:
                return ctx.stage
        return None


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Set up logging configuration.

    Args:
        level: Log level
        format_string: Custom format string
        json_format: Use JSON formatting
    """
    if format_string is None:
        if json_format:
            format_string = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        else:
            format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_string,
    )

    logging.getLogger("lockup_batch").setLevel(getattr(logging, level.upper()))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
