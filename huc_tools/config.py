"""Run configuration shared by the array submission and the array units"""
import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import List, Union

from huc_tools.errors import ConfigurationError
from huc_tools.util import atomic_write_text

HUC_LAYER_NAME = 'WBDHU12'
HUC_ID_FIELD = 'huc12'

# A prior run clipped all ~103K CONUS HUC12s with 128 cores in 5 hours
PRIOR_CORES = 128
PRIOR_HOURS = 5.
PRIOR_TOTAL_ITEMS = 103000

TARGET_MINUTES = 20
CPUS_PER_TASK = 4
CONCURRENCY = 50
SBATCH_MEM = '12G'
JOB_NAME = 'clip_huc12'
WALLTIME_MARGIN_MINUTES = 6
STALE_LOCK_MARGIN_MINUTES = 10
STARTUP_JITTER_SECONDS = 5.

DST_NODATA = -9999.
CREATION_OPTIONS = ['COMPRESS=LZW', 'PREDICTOR=2']


def time_budget_minutes(target_minutes: int) -> int:
    """Per-unit time limit: the target chunk duration plus a safety margin"""
    return target_minutes + WALLTIME_MARGIN_MINUTES


def default_stale_lock_seconds(budget_minutes: int) -> float:
    """A lock older than a unit can possibly run, plus a margin, belongs to a dead worker"""
    return float((budget_minutes + STALE_LOCK_MARGIN_MINUTES) * 60)


@dataclass(frozen=True)
class WorkspaceLayout:
    """Persisted state of a clipping run, all kept under the output directory"""
    output_dir: Path

    @property
    def status_dir(self) -> Path:
        return self.output_dir / 'status'

    @property
    def lock_dir(self) -> Path:
        return self.output_dir / 'locks'

    @property
    def tmp_dir(self) -> Path:
        return self.output_dir / 'tmp'

    @property
    def chunk_dir(self) -> Path:
        return self.tmp_dir / 'chunks'

    @property
    def log_dir(self) -> Path:
        return self.output_dir / 'slurm_logs'

    @property
    def work_item_list(self) -> Path:
        return self.tmp_dir / 'huc12_list.txt'

    @property
    def run_config(self) -> Path:
        return self.tmp_dir / 'run_config.json'

    def artifact_path(self, item_id: str) -> Path:
        return self.output_dir / f'{item_id}.tif'

    def create(self):
        for directory in (self.output_dir, self.status_dir, self.lock_dir, self.tmp_dir, self.chunk_dir,
                          self.log_dir):
            directory.mkdir(parents=True, exist_ok=True)


@dataclass
class RunConfig:
    """Everything an array unit needs to clip its chunk

    Written once by `submit_clip_array` and read by every `clip_chunk` unit.
    """
    vector_file: str
    mosaic: str
    output_dir: str
    chunk_files: List[str]
    layer: str = HUC_LAYER_NAME
    id_column: str = HUC_ID_FIELD
    cpus_per_task: int = CPUS_PER_TASK
    time_budget_minutes: int = TARGET_MINUTES + WALLTIME_MARGIN_MINUTES
    stale_lock_seconds: float = float((TARGET_MINUTES + WALLTIME_MARGIN_MINUTES + STALE_LOCK_MARGIN_MINUTES) * 60)
    reclaim_stale_locks: bool = True
    verify_rasters: bool = False
    dst_nodata: float = DST_NODATA
    creation_options: List[str] = field(default_factory=lambda: list(CREATION_OPTIONS))
    startup_jitter: float = STARTUP_JITTER_SECONDS

    @property
    def layout(self) -> WorkspaceLayout:
        return WorkspaceLayout(Path(self.output_dir))

    def save(self, path: Union[str, Path]) -> Path:
        return atomic_write_text(path, json.dumps(asdict(self), indent=2) + '\n')

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'RunConfig':
        try:
            data = json.loads(Path(path).read_text())
        except (OSError, ValueError) as e:
            raise ConfigurationError(f'Could not read run configuration {path}: {e}') from e

        known = {f.name for f in fields(cls)}
        if unknown := set(data) - known:
            raise ConfigurationError(f'Unknown run configuration keys in {path}: {sorted(unknown)}')
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f'Incomplete run configuration {path}: {e}') from e
