"""Capability interfaces for the GDAL tools the clipping workflow delegates to

Enumerating watershed IDs and clipping the DEM mosaic are the only geospatial operations
the workflow performs, and both are done by GDAL. Each has a production implementation
here; tests substitute fakes.
"""
import logging
import re
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence, Union

from osgeo import ogr

from huc_tools.config import CREATION_OPTIONS, DST_NODATA
from huc_tools.errors import EnumerationError, ItemClipFailure
from huc_tools.util import is_nonempty_file

ogr.UseExceptions()
log = logging.getLogger(__name__)


class AttributeQuery(ABC):
    """Reads the values of one attribute column of a vector layer"""

    @abstractmethod
    def values(self, layer: str, column: str) -> List[str]:
        """Raises `EnumerationError` if the vector store cannot be queried"""


class ClipTool(ABC):
    """Clips the DEM mosaic to a single watershed"""

    @abstractmethod
    def clip(self, item_id: str, out_raster: Path):
        """Write a complete raster clipped to `item_id` to `out_raster`

        Raises `ItemClipFailure` if the clip fails; `out_raster` is then unusable.
        """


def parse_ogrinfo_values(output: str, column: str) -> List[str]:
    """Extract attribute values from `ogrinfo -q` feature dumps

    `ogrinfo` reports each feature's attribute as a line like `  huc12 (String) = 010100020101`.
    Null values are dropped.
    """
    pattern = re.compile(rf'^\s*{re.escape(column)} \([\w ]+\) = (.*)$')
    values = []
    for line in output.splitlines():
        if match := pattern.match(line):
            value = match.group(1).strip()
            if value and value != '(null)':
                values.append(value)
    return values


class OgrinfoAttributeQuery(AttributeQuery):
    """Query attribute values by running `ogrinfo` with an SQL statement"""
    def __init__(self, vector_file: Union[str, Path], ogrinfo: str = 'ogrinfo'):
        self.vector_file = str(vector_file)
        self.ogrinfo = ogrinfo

    def values(self, layer: str, column: str) -> List[str]:
        command = [self.ogrinfo, '-ro', '-q', '-sql', f'SELECT {column} FROM {layer}', self.vector_file]
        log.debug(' '.join(command))
        try:
            result = subprocess.run(command, capture_output=True, text=True)
        except OSError as e:
            raise EnumerationError(f'Could not run {self.ogrinfo}: {e}') from e

        if result.returncode != 0:
            raise EnumerationError(
                f'{self.ogrinfo} failed for {self.vector_file} with exit code {result.returncode}: '
                f'{result.stderr.strip()}'
            )
        return parse_ogrinfo_values(result.stdout, column)


class OgrAttributeQuery(AttributeQuery):
    """Query attribute values in-process with the OGR Python bindings"""
    def __init__(self, vector_file: Union[str, Path]):
        self.vector_file = str(vector_file)

    def values(self, layer: str, column: str) -> List[str]:
        try:
            ds = ogr.Open(self.vector_file)
        except RuntimeError as e:
            raise EnumerationError(f'Could not open {self.vector_file}: {e}') from e

        lyr = ds.GetLayerByName(layer)
        if lyr is None:
            raise EnumerationError(f'Layer {layer} not found in {self.vector_file}')
        if lyr.GetLayerDefn().GetFieldIndex(column) < 0:
            raise EnumerationError(f'Column {column} not found in layer {layer} of {self.vector_file}')

        lyr.SetIgnoredFields(['OGR_GEOMETRY'])
        return [feature.GetFieldAsString(column) for feature in lyr if feature.IsFieldSetAndNotNull(column)]


def attribute_query(vector_file: Union[str, Path], backend: str = 'ogrinfo') -> AttributeQuery:
    if backend == 'ogrinfo':
        return OgrinfoAttributeQuery(vector_file)
    if backend == 'ogr':
        return OgrAttributeQuery(vector_file)
    raise ValueError(f'Unknown attribute query backend: {backend}')


def cutline_where(column: str, item_id: str) -> str:
    escaped = item_id.replace("'", "''")
    return f"{column} = '{escaped}'"


class GdalwarpClipTool(ClipTool):
    """Clip the DEM mosaic to one watershed polygon by running `gdalwarp` with a cutline"""
    def __init__(self, mosaic: Union[str, Path], vector_file: Union[str, Path], layer: str, id_column: str,
                 dst_nodata: float = DST_NODATA, creation_options: Optional[Sequence[str]] = None,
                 gdalwarp: str = 'gdalwarp'):
        self.mosaic = str(mosaic)
        self.vector_file = str(vector_file)
        self.layer = layer
        self.id_column = id_column
        self.dst_nodata = dst_nodata
        self.creation_options = list(CREATION_OPTIONS if creation_options is None else creation_options)
        self.gdalwarp = gdalwarp

    def command(self, item_id: str, out_raster: Union[str, Path]) -> List[str]:
        command = [
            self.gdalwarp, '-q', '-of', 'GTiff',
            '-cutline', self.vector_file,
            '-cl', self.layer,
            '-cwhere', cutline_where(self.id_column, item_id),
            '-crop_to_cutline',
            '-dstnodata', f'{self.dst_nodata:g}',
        ]
        for option in self.creation_options:
            command.extend(['-co', option])
        command.extend([self.mosaic, str(out_raster)])
        return command

    def clip(self, item_id: str, out_raster: Path):
        command = self.command(item_id, out_raster)
        log.debug(' '.join(command))
        try:
            result = subprocess.run(command, capture_output=True, text=True)
        except OSError as e:
            raise ItemClipFailure(item_id, f'could not run {self.gdalwarp}: {e}') from e

        if result.returncode != 0:
            raise ItemClipFailure(item_id, f'{self.gdalwarp} exited with {result.returncode}: '
                                           f'{result.stderr.strip()}')
        if not is_nonempty_file(out_raster):
            raise ItemClipFailure(item_id, f'{self.gdalwarp} did not write {out_raster}')
