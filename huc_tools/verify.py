"""Report how many of the expected HUC12 DEMs a clipping run has produced"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Union

from huc_tools.config import WorkspaceLayout
from huc_tools.errors import HucToolsError
from huc_tools.ledger import CompletionLedger, CompletionSummary
from huc_tools.registry import read_work_items, write_work_items

log = logging.getLogger(__name__)


def verify_output(output_dir: Union[str, Path], verify_rasters: bool = False,
                  pending_list: Optional[Union[str, Path]] = None) -> CompletionSummary:
    layout = WorkspaceLayout(Path(output_dir))
    items = read_work_items(layout.work_item_list)
    ledger = CompletionLedger.from_layout(layout, verify_rasters=verify_rasters)

    pending = ledger.pending_of(items)
    summary = CompletionSummary(expected=len(items), done=len(items) - len(pending))

    log.info('Verification results:')
    log.info(f'  Expected DEMs:  {summary.expected}')
    log.info(f'  Produced DEMs:  {summary.done}')
    log.info(f'  Pending:        {summary.pending}')

    if pending_list is not None and pending:
        write_work_items(pending_list, pending)
        log.info(f'Pending HUC12 IDs written to {pending_list}')

    if summary.deficit:
        log.warning('Not all DEMs were generated. Re-run submit_clip_array (or resubmit the array); '
                    'completed HUC12s are skipped automatically.')
    else:
        log.info('Success! All expected DEMs have been generated.')
    return summary


def main():
    parser = argparse.ArgumentParser(
        description=__doc__,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('output_dir', type=Path, help='Output directory of the clipping run')
    parser.add_argument('--verify-rasters', action='store_true', help='Open each DEM with GDAL to check it is valid')
    parser.add_argument('--pending-list', type=Path, help='Write the IDs of pending HUC12s to this file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Turn on verbose logging')
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(stream=sys.stdout, format='%(asctime)s - %(levelname)s - %(message)s', level=level)
    log.debug(' '.join(sys.argv))

    try:
        verify_output(args.output_dir, verify_rasters=args.verify_rasters, pending_list=args.pending_list)
    except HucToolsError as e:
        log.error(e)
        sys.exit(1)


if __name__ == '__main__':
    main()
