import logging
import os
import socket
import uuid
from pathlib import Path
from typing import Union

from osgeo import gdal

gdal.UseExceptions()
log = logging.getLogger(__name__)


class GDALConfigManager:
    """Context manager for setting GDAL config options temporarily

    Options are set for the current thread only, so threads opening rasters at the same time
    do not restore each other's options.
    """
    def __init__(self, **options):
        """
        Args:
            **options: GDAL Config `option=value` keyword arguments.
        """
        self.options = options.copy()
        self._previous_options = {}

    def __enter__(self):
        for key in self.options:
            self._previous_options[key] = gdal.GetThreadLocalConfigOption(key)

        for key, value in self.options.items():
            gdal.SetThreadLocalConfigOption(key, value)

    def __exit__(self, exc_type, exc_val, exc_tb):
        for key, value in self._previous_options.items():
            gdal.SetThreadLocalConfigOption(key, value)


def unique_suffix() -> str:
    """A suffix unique to this host, process and call"""
    return f'{socket.gethostname()}.{os.getpid()}.{uuid.uuid4().hex[:8]}'


def owner_id() -> str:
    """Identify the running worker: host and pid, plus the Slurm job/task when running in an array"""
    owner = f'{socket.gethostname()}:{os.getpid()}'
    job_id = os.environ.get('SLURM_ARRAY_JOB_ID', os.environ.get('SLURM_JOB_ID'))
    if job_id:
        owner += f':slurm-{job_id}'
        if (task_id := os.environ.get('SLURM_ARRAY_TASK_ID')) is not None:
            owner += f'_{task_id}'
    return owner


def atomic_write_text(path: Union[str, Path], text: str) -> Path:
    """Write text to a file so readers only ever observe the complete contents

    The text is written to a uniquely named sibling file which is then renamed over `path`.

    Args:
        path: The file to write
        text: The file contents

    Returns:
        path: The written file
    """
    path = Path(path)
    tmp_path = path.with_name(f'.{path.name}.{unique_suffix()}')
    try:
        tmp_path.write_text(text)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return path


def format_walltime(minutes: int) -> str:
    """Format a duration in minutes as a Slurm `HH:MM:SS` time limit"""
    if minutes < 1:
        raise ValueError(f'Walltime must be at least one minute, not {minutes}')
    hours, minutes = divmod(minutes, 60)
    return f'{hours:02d}:{minutes:02d}:00'


def is_nonempty_file(path: Union[str, Path]) -> bool:
    path = Path(path)
    return path.is_file() and path.stat().st_size > 0


def is_valid_raster(path: Union[str, Path]) -> bool:
    """Check that a raster exists, is non-empty and can be opened by GDAL

    Args:
        path: The raster file to check

    Returns:
        True if GDAL can open the raster and it has at least one band
    """
    if not is_nonempty_file(path):
        return False

    with GDALConfigManager(GDAL_DISABLE_READDIR_ON_OPEN='EMPTY_DIR'):
        try:
            ds = gdal.Open(str(path))
        except RuntimeError as e:
            log.debug(f'GDAL could not open {path}: {e}')
            return False
        valid = ds is not None and ds.RasterCount > 0
        ds = None
    return valid
