"""Clip the DEM mosaic to every watershed in one chunk

This is the entry point each array unit runs. Every item is processed independently:
already-done items are skipped, items locked by another worker are skipped, and clip
failures are logged and left pending for a future run.
"""
import argparse
import logging
import os
import random
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from huc_tools.chunks import read_chunk_file
from huc_tools.config import RunConfig
from huc_tools.errors import HucToolsError, ItemClipFailure, LockContention, StaleLockError
from huc_tools.gdal_tools import ClipTool, GdalwarpClipTool
from huc_tools.ledger import CompletionLedger
from huc_tools.locks import LockManager
from huc_tools.util import unique_suffix

log = logging.getLogger(__name__)


class ItemOutcome(str, Enum):
    DONE = 'done'
    SKIPPED = 'skipped'
    LOCKED = 'locked'
    STALE = 'stale'
    FAILED = 'failed'


@dataclass
class BatchReport:
    outcomes: Dict[str, ItemOutcome] = field(default_factory=dict)

    def count(self, outcome: ItemOutcome) -> int:
        return sum(1 for value in self.outcomes.values() if value == outcome)

    @property
    def failed(self) -> List[str]:
        return [item_id for item_id, outcome in self.outcomes.items() if outcome == ItemOutcome.FAILED]

    def summary(self) -> str:
        return ', '.join(f'{self.count(outcome)} {outcome.value}' for outcome in ItemOutcome)


class BatchExecutor:
    def __init__(self, clip_tool: ClipTool, ledger: CompletionLedger, locks: LockManager,
                 tmp_dir: Union[str, Path], workers: int = 1):
        """
        Args:
            clip_tool: Clips the mosaic to one item
            ledger: Records completed items
            locks: Hands out per-item locks
            tmp_dir: Directory for in-progress clip outputs
            workers: Number of items to clip at once
        """
        if workers < 1:
            raise ValueError(f'Need at least one worker, not {workers}')
        self.clip_tool = clip_tool
        self.ledger = ledger
        self.locks = locks
        self.tmp_dir = Path(tmp_dir)
        self.workers = workers

    def process_item(self, item_id: str) -> ItemOutcome:
        if self.ledger.is_done(item_id):
            log.debug(f'[SKIP] {item_id} already done')
            return ItemOutcome.SKIPPED

        try:
            lock = self.locks.acquire(item_id)
        except LockContention as e:
            log.info(f'[LOCKED] {e}; skipping')
            return ItemOutcome.LOCKED
        except StaleLockError as e:
            log.warning(f'[STALE] {e}; skipping')
            return ItemOutcome.STALE
        except OSError as e:
            log.error(f'[ERROR] Could not lock {item_id}: {e}')
            return ItemOutcome.FAILED

        with lock:
            # another worker may have finished the item between the check above and acquiring the lock
            if self.ledger.is_done(item_id):
                log.debug(f'[SKIP] {item_id} already done')
                return ItemOutcome.SKIPPED

            tmp_raster = self.tmp_dir / f'{item_id}.{unique_suffix()}.tif'
            start = time.monotonic()
            try:
                self.clip_tool.clip(item_id, tmp_raster)
                if not self.ledger.validate(tmp_raster):
                    raise ItemClipFailure(item_id, f'clipped raster {tmp_raster} is invalid')
                os.replace(tmp_raster, self.ledger.artifact_path(item_id))
                elapsed = time.monotonic() - start
                self.ledger.mark_done(item_id, elapsed_seconds=elapsed)
            except (ItemClipFailure, OSError) as e:
                log.error(f'[ERROR] Clipping {item_id} failed: {e}')
                return ItemOutcome.FAILED
            finally:
                if tmp_raster.exists():
                    tmp_raster.unlink()

        log.info(f'[DONE] {item_id} in {elapsed:.1f}s')
        return ItemOutcome.DONE

    def run(self, items: Iterable[str]) -> BatchReport:
        items = list(items)
        for directory in (self.tmp_dir, self.ledger.status_dir, self.locks.lock_dir):
            directory.mkdir(parents=True, exist_ok=True)
        log.info(f'Processing {len(items)} items with {self.workers} workers')

        report = BatchReport()
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {executor.submit(self.process_item, item_id): item_id for item_id in items}
            for future in as_completed(futures):
                report.outcomes[futures[future]] = future.result()

        log.info(f'Chunk finished: {report.summary()}')
        if report.failed:
            log.warning(f'Failed items will be retried by the next run: {", ".join(sorted(report.failed))}')
        return report


def build_executor(config: RunConfig, workers: Optional[int] = None) -> BatchExecutor:
    layout = config.layout
    clip_tool = GdalwarpClipTool(
        config.mosaic, config.vector_file, config.layer, config.id_column,
        dst_nodata=config.dst_nodata, creation_options=config.creation_options,
    )
    ledger = CompletionLedger.from_layout(layout, verify_rasters=config.verify_rasters)
    locks = LockManager(layout.lock_dir, config.stale_lock_seconds, reclaim_stale=config.reclaim_stale_locks)
    return BatchExecutor(clip_tool, ledger, locks, layout.tmp_dir, workers=workers or config.cpus_per_task)


def run_chunk(config: RunConfig, index: int, workers: Optional[int] = None,
              jitter: bool = True) -> Optional[BatchReport]:
    """Run one array unit: clip every item of the chunk at `index`

    Returns:
        report: The per-item outcomes, or None if there is no chunk at `index`
    """
    if not 0 <= index < len(config.chunk_files):
        log.warning(f'No chunk file for index {index}; {len(config.chunk_files)} chunks were planned')
        return None

    chunk_file = config.chunk_files[index]
    if not Path(chunk_file).exists():
        log.warning(f'Chunk file {chunk_file} not found')
        return None

    if jitter and config.startup_jitter > 0:
        # desynchronize units that start together to spread out the initial I/O
        time.sleep(random.uniform(0, config.startup_jitter))

    config.layout.create()
    executor = build_executor(config, workers)
    log.info(f'Unit {index} processing {chunk_file}')
    return executor.run(read_chunk_file(chunk_file))


def _default_workers() -> Optional[int]:
    cpus = os.environ.get('SLURM_CPUS_PER_TASK')
    return int(cpus) if cpus else None


def main():
    parser = argparse.ArgumentParser(
        description=__doc__,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--config', required=True, help='Run configuration JSON written by submit_clip_array')
    parser.add_argument('--index', type=int, default=os.environ.get('SLURM_ARRAY_TASK_ID'),
                        help='Index of the chunk to process; defaults to $SLURM_ARRAY_TASK_ID')
    parser.add_argument('--workers', type=int, default=_default_workers(),
                        help='Number of items to clip at once; defaults to $SLURM_CPUS_PER_TASK, '
                             'then the configured cpus per task')
    parser.add_argument('--no-jitter', action='store_true', help='Start immediately instead of after a random delay')
    parser.add_argument('-v', '--verbose', action='store_true', help='Turn on verbose logging')
    args = parser.parse_args()

    if args.index is None:
        parser.error('--index is required outside of a Slurm array job')

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(stream=sys.stdout, format='%(asctime)s - %(levelname)s - %(message)s', level=level)
    log.debug(' '.join(sys.argv))

    try:
        config = RunConfig.load(args.config)
        run_chunk(config, int(args.index), workers=args.workers, jitter=not args.no_jitter)
    except HucToolsError as e:
        log.error(e)
        sys.exit(1)

    log.info(f'Unit {args.index} finished')


if __name__ == '__main__':
    main()
