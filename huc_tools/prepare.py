"""Prepare DEM tiles and WBD HUC12 shapefiles for clipping

1. Merges all HUC12 shapefiles into a single GeoPackage.
2. Creates attribute and spatial indexes on the GeoPackage for fast per-HUC12 queries.
3. Builds a virtual raster (VRT) mosaic of all DEM tiles.
"""
import argparse
import logging
import sys
from pathlib import Path

from huc_tools.config import HUC_ID_FIELD, HUC_LAYER_NAME
from huc_tools.dem import build_dem_vrt
from huc_tools.errors import HucToolsError
from huc_tools.wbd import create_indexes, find_huc12_shapefiles, merge_huc12_shapefiles

log = logging.getLogger(__name__)


def prepare_huc_data(wbd_dir: Path, dem_dir: Path, gpkg: Path, vrt: Path, layer: str = HUC_LAYER_NAME,
                     id_column: str = HUC_ID_FIELD):
    log.info('[1/3] Merging HUC12 shapefiles')
    if gpkg.exists():
        log.info(f'{gpkg} already exists; skipping merge')
    else:
        shapefiles = find_huc12_shapefiles(wbd_dir, layer)
        log.info(f'Found {len(shapefiles)} HUC12 shapefiles under {wbd_dir}')
        merge_huc12_shapefiles(gpkg, shapefiles, layer)
        log.info(f'Merged all HUC12 shapefiles into {gpkg}')

    log.info('[2/3] Creating indexes on HUC GeoPackage')
    create_indexes(gpkg, layer, id_column)

    log.info('[3/3] Building DEM virtual raster')
    if vrt.exists():
        log.info(f'{vrt} already exists; overwriting')
    build_dem_vrt(vrt, dem_dir)


def main():
    parser = argparse.ArgumentParser(
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('wbd_dir', type=Path, help='Directory of unzipped WBD downloads, each with a Shape/ folder')
    parser.add_argument('dem_dir', type=Path, help='Directory of Copernicus DEM tiles')
    parser.add_argument('output_dir', type=Path, help='Directory for the merged GeoPackage and DEM VRT')
    parser.add_argument('--gpkg-name', default='WBD_CONUS_HUC12.gpkg', help='File name of the merged GeoPackage')
    parser.add_argument('--vrt-name', default='CONUS_DEM_30m.vrt', help='File name of the DEM mosaic VRT')
    parser.add_argument('--layer', default=HUC_LAYER_NAME, help='HUC12 layer name')
    parser.add_argument('--id-column', default=HUC_ID_FIELD, help='HUC12 ID column')
    parser.add_argument('-v', '--verbose', action='store_true', help='Turn on verbose logging')
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(stream=sys.stdout, format='%(asctime)s - %(levelname)s - %(message)s', level=level)
    log.debug(' '.join(sys.argv))

    args.output_dir.mkdir(parents=True, exist_ok=True)
    try:
        prepare_huc_data(args.wbd_dir, args.dem_dir, args.output_dir / args.gpkg_name,
                         args.output_dir / args.vrt_name, layer=args.layer, id_column=args.id_column)
    except HucToolsError as e:
        log.error(e)
        sys.exit(1)

    log.info('Data preparation complete')


if __name__ == '__main__':
    main()
