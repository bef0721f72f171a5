"""Download Copernicus GLO-30 DEM tiles covering a bounding box

Tiles come from the AWS Open Data bucket `s3://copernicus-dem-30m/`, see:
https://registry.opendata.aws/copernicus-dem/
"""
import argparse
import logging
import math
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import List, Sequence, Tuple, Union

from osgeo import gdal

from huc_tools.aws import COPERNICUS_DEM_BUCKET, download_file_from_s3
from huc_tools.errors import ConfigurationError

gdal.UseExceptions()
log = logging.getLogger(__name__)

# Approximate bounding box (west, south, east, north) of CONUS
CONUS_BBOX = (-125., 24., -66., 50.)
DOWNLOAD_THREADS = 16


def copernicus_tile_name(lat: int, lon: int) -> str:
    """Name of the 1x1 degree tile whose south-west corner is at (`lat`, `lon`)"""
    lat_hemisphere = 'N' if lat >= 0 else 'S'
    lon_hemisphere = 'E' if lon >= 0 else 'W'
    return f'Copernicus_DSM_COG_10_{lat_hemisphere}{abs(lat):02d}_00_{lon_hemisphere}{abs(lon):03d}_00_DEM'


def tile_names_for_bbox(west: float, south: float, east: float, north: float) -> List[str]:
    """Names of the tiles intersecting a bounding box, ordered south to north then west to east"""
    if west >= east or south >= north:
        raise ValueError(f'Invalid bounding box: ({west}, {south}, {east}, {north})')
    return [
        copernicus_tile_name(lat, lon)
        for lat in range(math.floor(south), math.ceil(north))
        for lon in range(math.floor(west), math.ceil(east))
    ]


def tile_key(tile_name: str) -> str:
    return f'{tile_name}/{tile_name}.tif'


def download_dem_tile(tile_name: str, out_dir: Union[str, Path]) -> Tuple[str, bool]:
    out_tile = Path(out_dir) / f'{tile_name}.tif'
    if out_tile.exists():
        log.debug(f'{out_tile} already downloaded')
        return tile_name, True
    found = download_file_from_s3(COPERNICUS_DEM_BUCKET, tile_key(tile_name), out_tile)
    if found:
        log.info(f'Downloaded {tile_name}')
    else:
        log.info(f'{tile_name} is not in the Copernicus DEM; skipping')
    return tile_name, found


def download_dem_tiles(bbox: Sequence[float], out_dir: Union[str, Path],
                       threads: int = DOWNLOAD_THREADS) -> Tuple[List[str], List[str]]:
    """Download the Copernicus GLO-30 DEM tiles intersecting a bounding box

    Tiles already in `out_dir` are not downloaded again. Tiles missing from the bucket
    (e.g., open ocean) are skipped.

    Args:
        bbox: (west, south, east, north) in degrees
        out_dir: Directory to download tiles into
        threads: Number of tiles to download at once

    Returns:
        (available, missing): names of the tiles now in `out_dir` and of the tiles not in the bucket
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    tile_names = tile_names_for_bbox(*bbox)
    log.info(f'Fetching {len(tile_names)} tiles with {threads} threads')

    results = {}
    with ThreadPoolExecutor(max_workers=threads) as executor:
        futures = [executor.submit(download_dem_tile, name, out_dir) for name in tile_names]
        for future in as_completed(futures):
            name, found = future.result()
            results[name] = found

    available = [name for name in tile_names if results[name]]
    missing = [name for name in tile_names if not results[name]]
    return available, missing


def find_dem_tiles(dem_dir: Union[str, Path], pattern: str = '*_DEM.tif') -> List[Path]:
    return sorted(Path(dem_dir).rglob(pattern))


def build_dem_vrt(vrt: Union[str, Path], dem_dir: Union[str, Path], pattern: str = '*_DEM.tif') -> Path:
    """Build a DEM mosaic VRT referencing every DEM tile under `dem_dir`

    Args:
        vrt: Path for the output VRT file; an existing VRT is overwritten
        dem_dir: Directory searched recursively for DEM tiles
        pattern: Glob matching the DEM tiles; auxiliary rasters are excluded by default

    Returns:
        vrt: The VRT file
    """
    dem_tiles = find_dem_tiles(dem_dir, pattern)
    if not dem_tiles:
        raise ConfigurationError(f'No DEM tiles matching {pattern} found under {dem_dir}')

    log.info(f'Building {vrt} from {len(dem_tiles)} DEM tiles')
    ds = gdal.BuildVRT(str(vrt), [str(tile) for tile in dem_tiles])
    ds = None  # flush the VRT to disk
    return Path(vrt)


def main():
    parser = argparse.ArgumentParser(
        description=__doc__,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('out_dir', type=Path, help='Directory to download DEM tiles into')
    parser.add_argument('--bbox', type=float, nargs=4, default=CONUS_BBOX, metavar=('WEST', 'SOUTH', 'EAST', 'NORTH'),
                        help='Bounding box, in degrees, to download tiles for')
    parser.add_argument('--threads', type=int, default=DOWNLOAD_THREADS, help='Number of tiles to download at once')
    parser.add_argument('-v', '--verbose', action='store_true', help='Turn on verbose logging')
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(stream=sys.stdout, format='%(asctime)s - %(levelname)s - %(message)s', level=level)
    log.debug(' '.join(sys.argv))

    try:
        available, missing = download_dem_tiles(args.bbox, args.out_dir, threads=args.threads)
    except ValueError as e:
        parser.error(str(e))

    if not available:
        log.error('No DEM tiles found. Check the bounding box.')
        sys.exit(1)
    log.info(f'{len(available)} DEM tiles in {args.out_dir}; {len(missing)} tiles not in the Copernicus DEM')


if __name__ == '__main__':
    main()
