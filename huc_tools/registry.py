"""Enumerate the watershed IDs that make up a clipping run"""
import logging
from pathlib import Path
from typing import Iterable, List, Union

from huc_tools.errors import EnumerationError
from huc_tools.gdal_tools import AttributeQuery
from huc_tools.util import atomic_write_text

log = logging.getLogger(__name__)


def enumerate_work_items(query: AttributeQuery, layer: str, column: str) -> List[str]:
    """Get the ordered, distinct work-item IDs of a vector layer

    Args:
        query: The attribute store to read from
        layer: Name of the layer holding the watershed polygons
        column: Name of the watershed ID column

    Returns:
        items: The distinct IDs, in the order the store returned them

    Raises:
        EnumerationError: if the store can't be queried or holds no IDs
    """
    log.info(f'Enumerating {column} values of layer {layer}')
    values = [value.strip() for value in query.values(layer, column)]
    values = [value for value in values if value]

    items = list(dict.fromkeys(values))
    if duplicates := len(values) - len(items):
        log.warning(f'Dropped {duplicates} duplicate {column} values')

    if not items:
        raise EnumerationError(f'No {column} values found in layer {layer}')

    log.info(f'Found {len(items)} {column} IDs')
    return items


def write_work_items(path: Union[str, Path], items: Iterable[str]) -> Path:
    return atomic_write_text(path, ''.join(f'{item}\n' for item in items))


def read_work_items(path: Union[str, Path]) -> List[str]:
    try:
        lines = Path(path).read_text().splitlines()
    except OSError as e:
        raise EnumerationError(f'Could not read work-item list {path}: {e}') from e

    items = [line.strip() for line in lines if line.strip()]
    if not items:
        raise EnumerationError(f'Work-item list {path} is empty')
    return items
