"""
Session archival for AdaptiveHandtracker.

Records processed frames (landmarks plus telemetry) in batches and appends
them as JSON Lines to <output_dir>/session_<id>.jsonl. Archival is best
effort: I/O failures are logged and the batch is dropped, the live pipeline
never sees them.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from .config import SESSION_BATCH_SIZE
from .hand_detector import HandLandmarks, HAND_CONNECTIONS
from .logger import get_logger
from .performance_tracker import PerformanceSample

logger = get_logger("SessionRecorder")


class SessionRecorder:
    """
    Batches frame records and writes them to disk.

    Attributes:
        session_id: Identifier written into every record and the file name.
        output_dir: Directory holding the session file.
        batch_size: Records buffered before a write.
    """

    def __init__(
        self,
        session_id: str,
        output_dir: str | Path,
        batch_size: int = SESSION_BATCH_SIZE
    ):
        self.session_id = str(session_id)
        self.output_dir = Path(output_dir)
        self.batch_size = max(1, batch_size)

        self._batch: list[dict] = []
        self._written = 0
        self._dropped = 0
        self._closed = False

    @property
    def path(self) -> Path:
        return self.output_dir / f"session_{self.session_id}.jsonl"

    @property
    def written_count(self) -> int:
        """Records successfully written to disk."""
        return self._written

    @property
    def dropped_count(self) -> int:
        """Records lost to write failures."""
        return self._dropped

    @property
    def pending_count(self) -> int:
        return len(self._batch)

    def record(
        self,
        frame_number: int,
        hands: Sequence[HandLandmarks],
        performance: Optional[PerformanceSample] = None
    ) -> None:
        """
        Add one processed frame to the current batch.

        A full batch is flushed to disk. Never raises.
        """
        if self._closed:
            logger.debug("Ignoring record on closed session")
            return

        try:
            self._batch.append({
                "sessionId": self.session_id,
                "frameNumber": frame_number,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "landmarks": [hand.to_dict() for hand in hands],
                "connections": [list(c) for c in HAND_CONNECTIONS],
                "performanceMetrics": performance.to_dict() if performance else None,
                "averageFps": performance.estimated_fps if performance else None,
            })
        except Exception as e:
            logger.warning(f"Could not serialize frame {frame_number}: {e}")
            return

        if len(self._batch) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        """Write the pending batch. On failure the batch is dropped."""
        if not self._batch:
            return

        batch, self._batch = self._batch, []
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                for entry in batch:
                    f.write(json.dumps(entry))
                    f.write("\n")
            self._written += len(batch)
            logger.debug(f"Wrote {len(batch)} records to {self.path}")
        except (OSError, TypeError, ValueError) as e:
            self._dropped += len(batch)
            logger.error(f"Failed to write session batch ({len(batch)} records dropped): {e}")

    def close(self) -> None:
        """Flush remaining records and stop accepting new ones."""
        if self._closed:
            return
        self.flush()
        self._closed = True
        logger.info(f"Session {self.session_id} closed ({self._written} records written)")

    def __enter__(self) -> "SessionRecorder":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
