"""Durable record of which work items have been clipped"""
import json
import logging
import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from huc_tools.config import WorkspaceLayout
from huc_tools.errors import ItemClipFailure
from huc_tools.util import atomic_write_text, is_nonempty_file, is_valid_raster, owner_id

log = logging.getLogger(__name__)

MARKER_SUFFIX = '.done'


@dataclass(frozen=True)
class CompletionSummary:
    expected: int
    done: int

    @property
    def pending(self) -> int:
        return self.expected - self.done

    @property
    def deficit(self) -> int:
        return self.pending


class CompletionLedger:
    """Per-item Done markers kept next to the clipped artifacts

    An item is Done only when its marker exists and its artifact passes validation, so a
    marker that outlives a deleted or truncated artifact does not count. Markers are written
    by atomic rename and can be created by any number of concurrent workers.
    """
    def __init__(self, status_dir: Union[str, Path], artifact_path: Callable[[str], Path],
                 validate: Callable[[Path], bool] = is_nonempty_file):
        """
        Args:
            status_dir: Directory holding the Done markers
            artifact_path: Maps an item ID to its output artifact
            validate: Check that an artifact is complete
        """
        self.status_dir = Path(status_dir)
        self.artifact_path = artifact_path
        self.validate = validate

    @classmethod
    def from_layout(cls, layout: WorkspaceLayout, verify_rasters: bool = False) -> 'CompletionLedger':
        validate = is_valid_raster if verify_rasters else is_nonempty_file
        return cls(layout.status_dir, layout.artifact_path, validate)

    def marker_path(self, item_id: str) -> Path:
        return self.status_dir / f'{item_id}{MARKER_SUFFIX}'

    def is_done(self, item_id: str) -> bool:
        if not self.marker_path(item_id).exists():
            return False
        if not self.validate(self.artifact_path(item_id)):
            log.warning(f'{item_id} is marked done but its artifact is missing or invalid')
            return False
        return True

    def mark_done(self, item_id: str, elapsed_seconds: Optional[float] = None):
        """Record an item as Done; its artifact must already be in place

        Raises:
            ItemClipFailure: if the item's artifact is missing or invalid
        """
        artifact = self.artifact_path(item_id)
        if not self.validate(artifact):
            raise ItemClipFailure(item_id, f'artifact {artifact} is missing or invalid; not marking done')

        marker = {
            'item_id': item_id,
            'completed_at': time.time(),
            'host': socket.gethostname(),
            'owner': owner_id(),
            'elapsed_seconds': elapsed_seconds,
        }
        atomic_write_text(self.marker_path(item_id), json.dumps(marker) + '\n')

    def pending_of(self, item_ids: Iterable[str]) -> List[str]:
        return [item_id for item_id in item_ids if not self.is_done(item_id)]

    def summarize(self, item_ids: Iterable[str]) -> CompletionSummary:
        item_ids = list(item_ids)
        done = sum(1 for item_id in item_ids if self.is_done(item_id))
        return CompletionSummary(expected=len(item_ids), done=done)

    def elapsed_seconds(self) -> List[float]:
        """Clip timings recorded in the Done markers

        Markers without a timing, such as empty markers from older runs, are skipped.
        """
        timings = []
        for marker in self.status_dir.glob(f'*{MARKER_SUFFIX}'):
            try:
                elapsed = json.loads(marker.read_text()).get('elapsed_seconds')
            except (OSError, ValueError, AttributeError):
                continue
            if isinstance(elapsed, (int, float)) and elapsed > 0:
                timings.append(float(elapsed))
        return timings
