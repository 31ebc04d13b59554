"""Checkpoint file helpers."""

import logging
import os
import re
from pathlib import Path
from typing import List, Optional

import torch

logger = logging.getLogger(__name__)

CHECKPOINT_PATTERN = re.compile(r'checkpoint_iter(\d+)\.pt$')


def checkpoint_name(iteration: int) -> str:
    """File name of the checkpoint written after ``iteration``.

    Example: 7 -> checkpoint_iter0007.pt
    """
    return f"checkpoint_iter{iteration:04d}.pt"


def parse_checkpoint_iteration(checkpoint_path: str) -> Optional[int]:
    """Parse the iteration from a checkpoint filename.

    Args:
        checkpoint_path: Path to checkpoint file

    Returns:
        Iteration if the name matches, None otherwise
    """
    match = CHECKPOINT_PATTERN.match(Path(checkpoint_path).name)
    if match:
        return int(match.group(1))
    return None


def list_checkpoints(checkpoint_dir: str) -> List[Path]:
    """Checkpoints in ``checkpoint_dir``, oldest iteration first."""
    directory = Path(checkpoint_dir)
    if not directory.is_dir():
        return []
    found = [p for p in directory.iterdir() if parse_checkpoint_iteration(str(p)) is not None]
    return sorted(found, key=lambda p: parse_checkpoint_iteration(str(p)))


def find_latest_checkpoint(checkpoint_dir: str) -> Optional[Path]:
    checkpoints = list_checkpoints(checkpoint_dir)
    return checkpoints[-1] if checkpoints else None


def atomic_save(state: dict, path: str) -> None:
    """``torch.save`` to a temporary file, then rename it over ``path``.

    A reader never observes a partially written checkpoint.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + '.tmp')
    try:
        torch.save(state, tmp_path)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def prune_checkpoints(checkpoint_dir: str, keep: int) -> List[Path]:
    """Delete all but the ``keep`` most recent checkpoints.

    Returns:
        Paths that were removed
    """
    if keep <= 0:
        return []
    removed = list_checkpoints(checkpoint_dir)[:-keep]
    for path in removed:
        path.unlink()
        logger.debug(f"Removed old checkpoint {path}")
    return removed
