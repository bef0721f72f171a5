"""Tools for clipping a Copernicus GLO-30 DEM mosaic to USGS WBD HUC12 watersheds"""

from importlib.metadata import version

__version__ = version(__name__)

__all__ = [
    '__version__',
]
