"""Merge USGS Watershed Boundary Dataset (WBD) HUC12 shapefiles into one indexed GeoPackage"""
import logging
import os
from pathlib import Path
from typing import List, Union

from osgeo import gdal, ogr

from huc_tools.config import HUC_ID_FIELD, HUC_LAYER_NAME
from huc_tools.errors import ConfigurationError

gdal.UseExceptions()
ogr.UseExceptions()
log = logging.getLogger(__name__)


def find_huc12_shapefiles(wbd_dir: Union[str, Path], layer: str = HUC_LAYER_NAME) -> List[Path]:
    """Find the HUC12 shapefiles of every unzipped WBD download, i.e. `*/Shape/WBDHU12.shp`"""
    return sorted(path for path in Path(wbd_dir).rglob(f'{layer}.shp') if path.parent.name == 'Shape')


def merge_huc12_shapefiles(gpkg: Union[str, Path], shapefiles: List[Path], layer: str = HUC_LAYER_NAME) -> Path:
    """Merge HUC12 shapefiles into a single GeoPackage layer

    The merge is written to a temporary GeoPackage which is renamed into place once every
    shapefile has been appended, so an interrupted merge never leaves a partial `gpkg`.

    Args:
        gpkg: GeoPackage to create
        shapefiles: HUC12 shapefiles to merge
        layer: Name of the merged layer

    Returns:
        gpkg: The merged GeoPackage
    """
    if not shapefiles:
        raise ConfigurationError('No HUC12 shapefiles to merge')

    gpkg = Path(gpkg)
    partial = gpkg.with_name(f'{gpkg.stem}.partial{gpkg.suffix}')
    if partial.exists():
        partial.unlink()

    for ii, shapefile in enumerate(shapefiles):
        log.info(f'  - {"Creating base file from" if ii == 0 else "Appending"}: {shapefile}')
        ds = gdal.VectorTranslate(
            str(partial), str(shapefile), format='GPKG', layerName=layer,
            geometryType='PROMOTE_TO_MULTI', accessMode=None if ii == 0 else 'append',
        )
        ds = None  # close to flush each append

    os.replace(partial, gpkg)
    return gpkg


def create_indexes(gpkg: Union[str, Path], layer: str = HUC_LAYER_NAME, id_column: str = HUC_ID_FIELD):
    """Create the attribute index on the ID column and the spatial index of a GeoPackage layer

    Without them, every per-HUC12 cutline query scans the whole layer.
    """
    ds = gdal.OpenEx(str(gpkg), gdal.OF_VECTOR | gdal.OF_UPDATE)
    lyr = ds.GetLayerByName(layer)
    if lyr is None:
        raise ConfigurationError(f'Layer {layer} not found in {gpkg}')
    geometry_column = lyr.GetGeometryColumn() or 'geom'

    log.info(f'  - Creating attribute index on {id_column}')
    ds.ExecuteSQL(f'CREATE INDEX IF NOT EXISTS idx_{layer.lower()}_{id_column} ON {layer}({id_column})')

    result = ds.ExecuteSQL(f"SELECT HasSpatialIndex('{layer}', '{geometry_column}')")
    has_spatial_index = bool(result.GetNextFeature().GetField(0))
    ds.ReleaseResultSet(result)

    if has_spatial_index:
        log.info(f'  - Spatial index on {geometry_column} already exists')
    else:
        log.info(f'  - Creating spatial index on {geometry_column}')
        result = ds.ExecuteSQL(f"SELECT CreateSpatialIndex('{layer}', '{geometry_column}')")
        if result is not None:
            ds.ReleaseResultSet(result)
    ds = None
