"""Per-iteration metrics log.

Appends one JSON line per training iteration so a run can be inspected or
plotted after the fact.
"""

import dataclasses
import json
import time
from pathlib import Path
from typing import Any


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _to_jsonable(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if hasattr(value, 'item') and callable(value.item):
        return value.item()  # numpy scalars
    if hasattr(value, 'value') and hasattr(value, 'name'):
        return value.name  # enums
    return value


class MetricsLogger:
    """Logs iteration reports to ``iterations.jsonl``."""

    def __init__(self, log_dir: str = "logs"):
        """Initialize metrics logger.

        Args:
            log_dir: Directory to save metrics
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.iterations_file = self.log_dir / "iterations.jsonl"

    def log_iteration(self, iteration: int, report: Any) -> None:
        """Append a report (dataclass or dict) for ``iteration``."""
        entry = {
            'timestamp': time.time(),
            'iteration': iteration,
            **_to_jsonable(report),
        }
        with open(self.iterations_file, 'a') as f:
            f.write(json.dumps(entry, default=str) + '\n')
