import shlex
import subprocess
import sys
import threading
import time

import pytest

from huc_tools.dispatch import LocalDispatcher, SlurmDispatcher, unit_command
from huc_tools.errors import DispatchError


class FakeRunner:
    def __init__(self, returncode=0, stdout='', stderr='', error=None):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.error = error
        self.commands = []

    def __call__(self, command, **kwargs):
        self.commands.append(command)
        if self.error:
            raise self.error
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, self.stderr)


def make_slurm_dispatcher(tmp_path, runner, **kwargs):
    return SlurmDispatcher(
        tmp_path / 'run_config.json', walltime='00:26:00', cpus_per_task=4, mem='12G', job_name='clip_huc12',
        log_dir=tmp_path / 'slurm_logs', runner=runner, **kwargs,
    )


def test_unit_command(tmp_path):
    config = tmp_path / 'run_config.json'
    assert unit_command(config) == [sys.executable, '-m', 'huc_tools.executor', '--config', str(config)]
    assert unit_command(config, 3)[-2:] == ['--index', '3']


def test_sbatch_command(tmp_path):
    dispatcher = make_slurm_dispatcher(tmp_path, FakeRunner())
    command = dispatcher.sbatch_command(375, 50)
    assert command == [
        'sbatch', '--parsable',
        '--job-name=clip_huc12',
        '--array=0-374%50',
        '--time=00:26:00',
        '--cpus-per-task=4',
        '--mem=12G',
        f'--output={tmp_path / "slurm_logs" / "clip_%A_%a.out"}',
        f'--error={tmp_path / "slurm_logs" / "clip_%A_%a.err"}',
        f'--wrap={shlex.join(unit_command(tmp_path / "run_config.json"))}',
    ]


def test_sbatch_command_extra_args(tmp_path):
    dispatcher = make_slurm_dispatcher(tmp_path, FakeRunner(), partition='compute',
                                       extra_args=['--mail-type=END,FAIL'])
    command = dispatcher.sbatch_command(3, 2)
    assert '--array=0-2%2' in command
    assert command[-3:-1] == ['--partition=compute', '--mail-type=END,FAIL']
    assert command[-1].startswith('--wrap=')


def test_slurm_dispatch(tmp_path):
    runner = FakeRunner(stdout='12345;cluster\n')
    handle = make_slurm_dispatcher(tmp_path, runner).dispatch(3, 2)

    assert handle.scheduler == 'slurm'
    assert handle.job_id == '12345'
    assert handle.unit_count == 3
    assert handle.concurrency == 2
    assert len(runner.commands) == 1


def test_slurm_dispatch_plain_job_id(tmp_path):
    handle = make_slurm_dispatcher(tmp_path, FakeRunner(stdout='678\n')).dispatch(1, 1)
    assert handle.job_id == '678'


def test_slurm_dispatch_failures(tmp_path):
    with pytest.raises(DispatchError, match='Invalid partition'):
        make_slurm_dispatcher(tmp_path, FakeRunner(returncode=1, stderr='Invalid partition\n')).dispatch(3, 2)

    with pytest.raises(DispatchError, match='job ID'):
        make_slurm_dispatcher(tmp_path, FakeRunner(stdout='\n')).dispatch(3, 2)

    with pytest.raises(DispatchError, match='Could not run sbatch'):
        make_slurm_dispatcher(tmp_path, FakeRunner(error=FileNotFoundError('sbatch'))).dispatch(3, 2)


def test_dispatch_nothing(tmp_path):
    runner = FakeRunner(stdout='12345\n')
    with pytest.raises(DispatchError):
        make_slurm_dispatcher(tmp_path, runner).dispatch(0, 50)
    with pytest.raises(DispatchError):
        make_slurm_dispatcher(tmp_path, runner).dispatch(3, 0)
    with pytest.raises(DispatchError):
        LocalDispatcher(tmp_path / 'run_config.json', runner=runner).dispatch(0, 50)
    assert runner.commands == []


class CountingRunner:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.indexes = []
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def __call__(self, command):
        index = int(command[command.index('--index') + 1])
        with self._lock:
            self.indexes.append(index)
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        time.sleep(0.05)
        with self._lock:
            self.running -= 1
        return subprocess.CompletedProcess(command, 1 if index in self.failing else 0)


def test_local_dispatch(tmp_path):
    runner = CountingRunner(failing={2})
    handle = LocalDispatcher(tmp_path / 'run_config.json', runner=runner).dispatch(6, 2)

    assert handle.scheduler == 'local'
    assert sorted(runner.indexes) == [0, 1, 2, 3, 4, 5]
    assert runner.max_running <= 2
    assert handle.return_codes == {0: 0, 1: 0, 2: 1, 3: 0, 4: 0, 5: 0}
    assert handle.failed_units == [2]
