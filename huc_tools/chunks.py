"""Partition work items into chunks sized for a target array-unit duration"""
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from statistics import mean
from typing import List, Optional, Sequence, Tuple, Union

from huc_tools.errors import PlanningError
from huc_tools.util import atomic_write_text

log = logging.getLogger(__name__)

CHUNK_PREFIX = 'chunk_'
MIN_OBSERVED_SAMPLES = 50


@dataclass(frozen=True)
class Chunk:
    name: str
    items: Tuple[str, ...]

    def __len__(self):
        return len(self.items)


@dataclass(frozen=True)
class Throughput:
    """Average wall-clock seconds one core spends on one item"""
    avg_seconds_per_item: float

    @classmethod
    def from_prior_run(cls, cores: int, hours: float, total_items: int) -> 'Throughput':
        """Estimate throughput from a prior run that processed `total_items` with `cores` in `hours`"""
        if cores <= 0 or hours <= 0 or total_items <= 0:
            raise PlanningError(
                f'Prior run statistics must be positive: cores={cores}, hours={hours}, items={total_items}'
            )
        return cls(cores * hours * 3600 / total_items)


class FixedSizeStrategy:
    def __init__(self, chunk_size: int):
        self.chunk_size = chunk_size

    def items_per_chunk(self) -> int:
        return self.chunk_size

    def __repr__(self):
        return f'FixedSizeStrategy(chunk_size={self.chunk_size})'


class BudgetStrategy:
    """Size chunks so one array unit finishes in about `target_seconds`

    A unit with `cores_per_batch` workers clips `cores_per_batch / avg_seconds_per_item` items
    per second, so it can take `ceil(cores_per_batch * target_seconds / avg_seconds_per_item)`.
    """
    def __init__(self, throughput: Throughput, target_seconds: float, cores_per_batch: int):
        self.throughput = throughput
        self.target_seconds = target_seconds
        self.cores_per_batch = cores_per_batch

    def items_per_chunk(self) -> int:
        if self.throughput.avg_seconds_per_item <= 0:
            raise PlanningError(f'Average seconds per item must be positive: {self.throughput}')
        if self.target_seconds <= 0 or self.cores_per_batch <= 0:
            raise PlanningError(f'Target duration and cores per batch must be positive: '
                                f'target_seconds={self.target_seconds}, cores_per_batch={self.cores_per_batch}')

        estimate = self.cores_per_batch * self.target_seconds / self.throughput.avg_seconds_per_item
        return max(1, math.ceil(estimate))

    def __repr__(self):
        return (f'BudgetStrategy(avg_seconds_per_item={self.throughput.avg_seconds_per_item:.2f}, '
                f'target_seconds={self.target_seconds}, cores_per_batch={self.cores_per_batch})')


def chunk_name(index: int, chunk_count: int) -> str:
    width = max(4, len(str(chunk_count - 1)))
    return f'{CHUNK_PREFIX}{index:0{width}d}'


def plan(items: Sequence[str], strategy) -> List[Chunk]:
    """Partition items into consecutive chunks

    Concatenating the chunks, in order, gives back `items` exactly.

    Args:
        items: The work items to partition
        strategy: A `FixedSizeStrategy` or `BudgetStrategy`

    Returns:
        chunks: The planned chunks, named `chunk_0000`, `chunk_0001`, ...
    """
    items = list(items)
    if not items:
        raise PlanningError('Cannot plan chunks for an empty list of work items')

    size = strategy.items_per_chunk()
    if size < 1:
        raise PlanningError(f'Items per chunk must be at least 1, not {size}')

    chunk_count = math.ceil(len(items) / size)
    chunks = [
        Chunk(chunk_name(index, chunk_count), tuple(items[start:start + size]))
        for index, start in enumerate(range(0, len(items), size))
    ]
    log.debug(f'Planned {len(chunks)} chunks of up to {size} items with {strategy}')
    return chunks


def write_chunk_files(chunk_dir: Union[str, Path], chunks: Sequence[Chunk]) -> List[Path]:
    """Write each chunk as a text file of IDs, one per line, replacing any previous chunk files"""
    chunk_dir = Path(chunk_dir)
    chunk_dir.mkdir(parents=True, exist_ok=True)
    for old_chunk in chunk_dir.glob(f'{CHUNK_PREFIX}*.txt'):
        old_chunk.unlink()

    return [
        atomic_write_text(chunk_dir / f'{chunk.name}.txt', ''.join(f'{item}\n' for item in chunk.items))
        for chunk in chunks
    ]


def read_chunk_file(path: Union[str, Path]) -> List[str]:
    return [line.strip() for line in Path(path).read_text().splitlines() if line.strip()]


def observed_throughput(ledger) -> Optional[Throughput]:
    """Measure throughput from the clip timings recorded in a completion ledger

    Returns:
        The observed throughput, or None if fewer than `MIN_OBSERVED_SAMPLES` items have timings
    """
    timings = ledger.elapsed_seconds()
    if len(timings) < MIN_OBSERVED_SAMPLES:
        log.info(f'Only {len(timings)} recorded clip timings; need {MIN_OBSERVED_SAMPLES} to estimate throughput')
        return None
    return Throughput(mean(timings))
