"""Schedule one independent execution unit per chunk

Dispatchers only enumerate units and enforce the concurrency ceiling; each unit runs
`huc_tools.executor` in its own process and coordinates with the others through the
completion ledger and item locks alone.
"""
import logging
import shlex
import subprocess
import sys
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from huc_tools.errors import DispatchError

log = logging.getLogger(__name__)


@dataclass
class SubmissionHandle:
    scheduler: str
    unit_count: int
    concurrency: int
    job_id: Optional[str] = None
    return_codes: Dict[int, int] = field(default_factory=dict)

    @property
    def failed_units(self) -> List[int]:
        return sorted(index for index, code in self.return_codes.items() if code != 0)


def unit_command(config_path: Union[str, Path], index: Optional[int] = None) -> List[str]:
    """The command one array unit runs; without `index` the unit reads `$SLURM_ARRAY_TASK_ID`"""
    command = [sys.executable, '-m', 'huc_tools.executor', '--config', str(config_path)]
    if index is not None:
        command.extend(['--index', str(index)])
    return command


def _check_array(unit_count: int, concurrency: int):
    if unit_count < 1:
        raise DispatchError(f'Nothing to dispatch: {unit_count} units')
    if concurrency < 1:
        raise DispatchError(f'Concurrency ceiling must be at least 1, not {concurrency}')


class Dispatcher(ABC):
    @abstractmethod
    def dispatch(self, unit_count: int, concurrency: int) -> SubmissionHandle:
        """Schedule units `0..unit_count-1`, running at most `concurrency` at once"""


class SlurmDispatcher(Dispatcher):
    """Submit the units as a single Slurm job array"""
    def __init__(self, config_path: Union[str, Path], walltime: str, cpus_per_task: int, mem: str,
                 job_name: str, log_dir: Union[str, Path], partition: Optional[str] = None,
                 extra_args: Sequence[str] = (), runner: Callable = subprocess.run, sbatch: str = 'sbatch'):
        self.config_path = Path(config_path)
        self.walltime = walltime
        self.cpus_per_task = cpus_per_task
        self.mem = mem
        self.job_name = job_name
        self.log_dir = Path(log_dir)
        self.partition = partition
        self.extra_args = list(extra_args)
        self.runner = runner
        self.sbatch = sbatch

    def sbatch_command(self, unit_count: int, concurrency: int) -> List[str]:
        command = [
            self.sbatch, '--parsable',
            f'--job-name={self.job_name}',
            f'--array=0-{unit_count - 1}%{concurrency}',
            f'--time={self.walltime}',
            f'--cpus-per-task={self.cpus_per_task}',
            f'--mem={self.mem}',
            f'--output={self.log_dir / "clip_%A_%a.out"}',
            f'--error={self.log_dir / "clip_%A_%a.err"}',
        ]
        if self.partition:
            command.append(f'--partition={self.partition}')
        command.extend(self.extra_args)
        command.append(f'--wrap={shlex.join(unit_command(self.config_path))}')
        return command

    def dispatch(self, unit_count: int, concurrency: int) -> SubmissionHandle:
        _check_array(unit_count, concurrency)
        command = self.sbatch_command(unit_count, concurrency)
        log.info(f'[CMD] {shlex.join(command)}')
        try:
            result = self.runner(command, capture_output=True, text=True)
        except OSError as e:
            raise DispatchError(f'Could not run {self.sbatch}: {e}') from e

        if result.returncode != 0:
            raise DispatchError(f'{self.sbatch} failed with exit code {result.returncode}: {result.stderr.strip()}')

        # --parsable prints `jobid` or `jobid;cluster`
        job_id = result.stdout.strip().split(';')[0]
        if not job_id:
            raise DispatchError(f'{self.sbatch} did not report a job ID')

        log.info(f'Submitted Slurm array job {job_id} with {unit_count} units, at most {concurrency} at once')
        return SubmissionHandle('slurm', unit_count, concurrency, job_id=job_id)


class LocalDispatcher(Dispatcher):
    """Run the units as separate processes on this machine"""
    def __init__(self, config_path: Union[str, Path], runner: Callable = subprocess.run):
        self.config_path = Path(config_path)
        self.runner = runner

    def _run_unit(self, index: int) -> int:
        command = unit_command(self.config_path, index)
        log.debug(f'[CMD] {shlex.join(command)}')
        return self.runner(command).returncode

    def dispatch(self, unit_count: int, concurrency: int) -> SubmissionHandle:
        _check_array(unit_count, concurrency)
        log.info(f'Running {unit_count} units locally, at most {concurrency} at once')

        handle = SubmissionHandle('local', unit_count, concurrency)
        with ThreadPoolExecutor(max_workers=concurrency) as executor:
            futures = {executor.submit(self._run_unit, index): index for index in range(unit_count)}
            for future in as_completed(futures):
                index = futures[future]
                handle.return_codes[index] = future.result()
                if handle.return_codes[index] != 0:
                    log.warning(f'Unit {index} exited with {handle.return_codes[index]}')

        log.info(f'All {unit_count} local units finished; {len(handle.failed_units)} failed')
        return handle
