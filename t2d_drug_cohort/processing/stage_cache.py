"""
Stage Checkpoints
=================

Each pipeline stage writes its output table to `<cache_dir>/<name>.parquet`.
A later run reuses the checkpoint instead of recomputing, so a run can be
restarted from any stage. Cancellation is checked before every stage.
"""

import threading
import pandas as pd
from pathlib import Path
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)


class PipelineCancelled(RuntimeError):
    """Raised between stages once cancellation has been requested."""


class StageCache:
    """Parquet checkpoints keyed by stage table name."""

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        refresh: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize cache.

        Args:
            cache_dir: Checkpoint directory; None disables checkpointing
            refresh: Recompute stages even when a checkpoint exists
            cancel_event: Set from another thread to stop before the next stage
        """
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.refresh = refresh
        self.cancel_event = cancel_event or threading.Event()

    def path(self, name: str) -> Optional[Path]:
        if self.cache_dir is None:
            return None
        return self.cache_dir / f"{name}.parquet"

    def check_cancelled(self, name: str):
        if self.cancel_event.is_set():
            raise PipelineCancelled(f"Cancelled before stage '{name}'")

    def cached(self, name: str, build: Callable[[], pd.DataFrame]) -> pd.DataFrame:
        """
        Return the checkpoint for `name`, building and saving it if needed.

        Args:
            name: Stage table name
            build: Zero-argument function producing the table

        Returns:
            Stage output
        """
        self.check_cancelled(name)
        path = self.path(name)

        if path is not None and path.exists() and not self.refresh:
            logger.info(f"Using checkpoint {path}")
            return pd.read_parquet(path)

        result = build()
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            result.to_parquet(path, index=False)
            logger.info(f"Saved {name}: {len(result):,} rows to {path}")
        return result
