import threading
from pathlib import Path

import pytest
from osgeo import gdal, ogr, osr

from huc_tools.config import WorkspaceLayout
from huc_tools.errors import EnumerationError, ItemClipFailure
from huc_tools.gdal_tools import AttributeQuery, ClipTool
from huc_tools.ledger import CompletionLedger
from huc_tools.locks import LockManager

gdal.UseExceptions()
ogr.UseExceptions()


class FakeAttributeQuery(AttributeQuery):
    def __init__(self, values=None, error=None):
        self._values = list(values or [])
        self.error = error
        self.calls = []

    def values(self, layer, column):
        self.calls.append((layer, column))
        if self.error:
            raise EnumerationError(self.error)
        return list(self._values)


class FakeClipTool(ClipTool):
    """Writes a small file per item; items in `fail` leave a partial output and fail"""
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls = []
        self._lock = threading.Lock()

    def clip(self, item_id, out_raster):
        with self._lock:
            self.calls.append(item_id)
        Path(out_raster).write_bytes(f'clipped {item_id}'.encode())
        if item_id in self.fail:
            raise ItemClipFailure(item_id, 'gdalwarp exited with 1')


@pytest.fixture
def layout(tmp_path):
    layout = WorkspaceLayout(tmp_path / 'clipped')
    layout.create()
    return layout


@pytest.fixture
def ledger(layout):
    return CompletionLedger.from_layout(layout)


@pytest.fixture
def locks(layout):
    return LockManager(layout.lock_dir, stale_after=600)


def make_raster(path, west, north, size=10, resolution=0.1):
    srs = osr.SpatialReference()
    srs.ImportFromEPSG(4326)
    driver = gdal.GetDriverByName('GTiff')
    ds = driver.Create(str(path), size, size, 1, gdal.GDT_Float32)
    ds.SetGeoTransform([west, resolution, 0.0, north, 0.0, -resolution])
    ds.SetProjection(srs.ExportToWkt())
    ds.GetRasterBand(1).Fill(1)
    ds = None
    return path


def make_huc12_shapefile(path, hucs, x_offset=0):
    path.parent.mkdir(parents=True, exist_ok=True)
    srs = osr.SpatialReference()
    srs.ImportFromEPSG(4326)
    ds = ogr.GetDriverByName('ESRI Shapefile').CreateDataSource(str(path))
    layer = ds.CreateLayer(path.stem, srs, ogr.wkbPolygon)
    layer.CreateField(ogr.FieldDefn('huc12', ogr.OFTString))
    for ii, huc in enumerate(hucs):
        x = x_offset + ii * 0.5
        feature = ogr.Feature(layer.GetLayerDefn())
        feature.SetField('huc12', huc)
        feature.SetGeometry(ogr.CreateGeometryFromWkt(
            f'POLYGON (({x} 0.1, {x} 0.5, {x + 0.4} 0.5, {x + 0.4} 0.1, {x} 0.1))'
        ))
        layer.CreateFeature(feature)
        feature = None
    ds = None
    return path
