import shutil
import subprocess

import pytest
from conftest import make_huc12_shapefile, make_raster

from huc_tools import gdal_tools
from huc_tools.errors import EnumerationError, ItemClipFailure
from huc_tools.util import is_valid_raster

OGRINFO_OUTPUT = """INFO: Open of `WBD_CONUS_HUC12.gpkg'
      using driver `GPKG' successful.

Layer name: SELECT
OGRFeature(SELECT):0
  huc12 (String) = 010100020101

OGRFeature(SELECT):1
  huc12 (String) = 010100020102

OGRFeature(SELECT):2
  huc12 (String) = (null)

OGRFeature(SELECT):3
  huc12 (String) = 010100020103
"""


def test_parse_ogrinfo_values():
    assert gdal_tools.parse_ogrinfo_values(OGRINFO_OUTPUT, 'huc12') == [
        '010100020101', '010100020102', '010100020103',
    ]
    assert gdal_tools.parse_ogrinfo_values(OGRINFO_OUTPUT, 'huc10') == []
    assert gdal_tools.parse_ogrinfo_values('  tnmid (Integer64) = 17\n', 'tnmid') == ['17']


def test_ogrinfo_attribute_query(monkeypatch):
    commands = []

    def run(command, **kwargs):
        commands.append(command)
        return subprocess.CompletedProcess(command, 0, OGRINFO_OUTPUT, '')

    monkeypatch.setattr(gdal_tools.subprocess, 'run', run)
    query = gdal_tools.OgrinfoAttributeQuery('WBD_CONUS_HUC12.gpkg')
    assert query.values('WBDHU12', 'huc12') == ['010100020101', '010100020102', '010100020103']
    assert commands == [
        ['ogrinfo', '-ro', '-q', '-sql', 'SELECT huc12 FROM WBDHU12', 'WBD_CONUS_HUC12.gpkg'],
    ]


def test_ogrinfo_attribute_query_errors(monkeypatch):
    def failed(command, **kwargs):
        return subprocess.CompletedProcess(command, 1, '', 'ERROR 1: no such table: WBDHU12\n')

    monkeypatch.setattr(gdal_tools.subprocess, 'run', failed)
    with pytest.raises(EnumerationError, match='no such table'):
        gdal_tools.OgrinfoAttributeQuery('WBD_CONUS_HUC12.gpkg').values('WBDHU12', 'huc12')

    def missing(command, **kwargs):
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(gdal_tools.subprocess, 'run', missing)
    with pytest.raises(EnumerationError, match='Could not run ogrinfo'):
        gdal_tools.OgrinfoAttributeQuery('WBD_CONUS_HUC12.gpkg').values('WBDHU12', 'huc12')


def test_attribute_query():
    assert isinstance(gdal_tools.attribute_query('huc12.gpkg'), gdal_tools.OgrinfoAttributeQuery)
    assert isinstance(gdal_tools.attribute_query('huc12.gpkg', 'ogr'), gdal_tools.OgrAttributeQuery)
    with pytest.raises(ValueError):
        gdal_tools.attribute_query('huc12.gpkg', 'fiona')


def test_ogr_attribute_query(tmp_path):
    shapefile = make_huc12_shapefile(tmp_path / 'WBDHU12.shp', ['010100020101', '010100020102'])
    query = gdal_tools.OgrAttributeQuery(shapefile)
    assert query.values('WBDHU12', 'huc12') == ['010100020101', '010100020102']

    with pytest.raises(EnumerationError, match='Layer WBDHU10 not found'):
        query.values('WBDHU10', 'huc12')
    with pytest.raises(EnumerationError, match='Column huc10 not found'):
        query.values('WBDHU12', 'huc10')
    with pytest.raises(EnumerationError, match='Could not open'):
        gdal_tools.OgrAttributeQuery(tmp_path / 'missing.gpkg').values('WBDHU12', 'huc12')


def test_cutline_where():
    assert gdal_tools.cutline_where('huc12', '010100020101') == "huc12 = '010100020101'"
    assert gdal_tools.cutline_where('name', "O'Brien Creek") == "name = 'O''Brien Creek'"


def test_gdalwarp_command():
    clip_tool = gdal_tools.GdalwarpClipTool('dem.vrt', 'huc12.gpkg', 'WBDHU12', 'huc12')
    assert clip_tool.command('010100020101', 'out.tif') == [
        'gdalwarp', '-q', '-of', 'GTiff',
        '-cutline', 'huc12.gpkg',
        '-cl', 'WBDHU12',
        '-cwhere', "huc12 = '010100020101'",
        '-crop_to_cutline',
        '-dstnodata', '-9999',
        '-co', 'COMPRESS=LZW',
        '-co', 'PREDICTOR=2',
        'dem.vrt', 'out.tif',
    ]

    clip_tool = gdal_tools.GdalwarpClipTool('dem.vrt', 'huc12.gpkg', 'WBDHU12', 'huc12', dst_nodata=0.5,
                                            creation_options=[])
    assert clip_tool.command('A', 'out.tif')[-4:] == ['-dstnodata', '0.5', 'dem.vrt', 'out.tif']


def test_gdalwarp_clip_failures(tmp_path, monkeypatch):
    clip_tool = gdal_tools.GdalwarpClipTool('dem.vrt', 'huc12.gpkg', 'WBDHU12', 'huc12')
    out_raster = tmp_path / 'A.tif'

    monkeypatch.setattr(gdal_tools.subprocess, 'run',
                        lambda command, **kwargs: subprocess.CompletedProcess(command, 1, '', 'ERROR 1: bad\n'))
    with pytest.raises(ItemClipFailure) as exc:
        clip_tool.clip('A', out_raster)
    assert exc.value.item_id == 'A'
    assert 'bad' in exc.value.message

    monkeypatch.setattr(gdal_tools.subprocess, 'run',
                        lambda command, **kwargs: subprocess.CompletedProcess(command, 0, '', ''))
    with pytest.raises(ItemClipFailure, match='did not write'):
        clip_tool.clip('A', out_raster)

    def missing(command, **kwargs):
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(gdal_tools.subprocess, 'run', missing)
    with pytest.raises(ItemClipFailure, match='could not run gdalwarp'):
        clip_tool.clip('A', out_raster)


@pytest.mark.skipif(shutil.which('gdalwarp') is None, reason='gdalwarp is not installed')
def test_gdalwarp_clip(tmp_path):
    mosaic = make_raster(tmp_path / 'dem.tif', west=0., north=1.)
    vector_file = make_huc12_shapefile(tmp_path / 'WBDHU12.shp', ['010100020101', '010100020102'])
    clip_tool = gdal_tools.GdalwarpClipTool(mosaic, vector_file, 'WBDHU12', 'huc12')

    out_raster = tmp_path / '010100020102.tif'
    clip_tool.clip('010100020102', out_raster)
    assert is_valid_raster(out_raster)

    with pytest.raises(ItemClipFailure):
        clip_tool.clip('999999999999', tmp_path / 'missing.tif')


@pytest.mark.skipif(shutil.which('ogrinfo') is None, reason='ogrinfo is not installed')
def test_ogrinfo_attribute_query_shapefile(tmp_path):
    shapefile = make_huc12_shapefile(tmp_path / 'WBDHU12.shp', ['010100020101', '010100020102'])
    assert gdal_tools.OgrinfoAttributeQuery(shapefile).values('WBDHU12', 'huc12') == [
        '010100020101', '010100020102',
    ]
