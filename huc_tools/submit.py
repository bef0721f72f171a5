"""Plan and submit an array of DEM clipping units, one per chunk of HUC12 watersheds

Enumerates the HUC12 IDs of the merged WBD GeoPackage, sizes chunks so each unit runs for
about `--minutes`, writes the chunk files and a run configuration, and submits the units
to Slurm (or runs them locally). Completed HUC12s are skipped by the units, so re-running
this script picks up wherever the previous run left off.
"""
import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from huc_tools import config as cfg
from huc_tools.chunks import (BudgetStrategy, Chunk, FixedSizeStrategy, Throughput, observed_throughput, plan,
                              write_chunk_files)
from huc_tools.config import RunConfig, WorkspaceLayout
from huc_tools.dispatch import Dispatcher, LocalDispatcher, SlurmDispatcher, SubmissionHandle
from huc_tools.errors import ConfigurationError, HucToolsError, PlanningError
from huc_tools.gdal_tools import attribute_query
from huc_tools.ledger import CompletionLedger
from huc_tools.registry import enumerate_work_items, write_work_items
from huc_tools.util import format_walltime

log = logging.getLogger(__name__)


@dataclass
class ArrayPlan:
    items: List[str]
    chunks: List[Chunk]
    strategy: object
    run_config: RunConfig
    walltime: str

    @property
    def items_per_chunk(self) -> int:
        return self.strategy.items_per_chunk()


def choose_strategy(chunk_size: Optional[int], target_minutes: int, cpus_per_task: int,
                    throughput: Throughput):
    if chunk_size is not None:
        return FixedSizeStrategy(chunk_size)
    return BudgetStrategy(throughput, target_seconds=target_minutes * 60, cores_per_batch=cpus_per_task)


def plan_array(vector_file: Path, mosaic: Path, output_dir: Path, layer: str = cfg.HUC_LAYER_NAME,
               id_column: str = cfg.HUC_ID_FIELD, query_backend: str = 'ogrinfo',
               target_minutes: int = cfg.TARGET_MINUTES, cpus_per_task: int = cfg.CPUS_PER_TASK,
               chunk_size: Optional[int] = None, throughput: Optional[Throughput] = None,
               use_observed_throughput: bool = False, stale_lock_minutes: Optional[float] = None,
               reclaim_stale_locks: bool = True, verify_rasters: bool = False) -> ArrayPlan:
    """Enumerate, chunk and configure a clipping run, writing its state under `output_dir`"""
    vector_file, mosaic, output_dir = (Path(path).resolve() for path in (vector_file, mosaic, output_dir))
    for path in (vector_file, mosaic):
        if not path.exists():
            raise ConfigurationError(f'Input not found: {path}')
    if target_minutes < 1:
        raise PlanningError(f'Target unit length must be at least one minute, not {target_minutes}')
    if cpus_per_task < 1:
        raise PlanningError(f'Each unit needs at least one cpu, not {cpus_per_task}')

    layout = WorkspaceLayout(output_dir)
    layout.create()

    log.info('[1/4] Generating HUC list')
    items = enumerate_work_items(attribute_query(vector_file, query_backend), layer, id_column)
    write_work_items(layout.work_item_list, items)

    log.info('[2/4] Runtime estimate and chunking')
    ledger = CompletionLedger.from_layout(layout, verify_rasters=verify_rasters)
    summary = ledger.summarize(items)
    log.info(f'  {summary.done} of {summary.expected} HUCs are already done')
    if throughput is None:
        throughput = Throughput.from_prior_run(cfg.PRIOR_CORES, cfg.PRIOR_HOURS, cfg.PRIOR_TOTAL_ITEMS)
    if use_observed_throughput and (observed := observed_throughput(ledger)) is not None:
        log.info(f'  Using observed throughput of {observed.avg_seconds_per_item:.2f} s/item')
        throughput = observed

    strategy = choose_strategy(chunk_size, target_minutes, cpus_per_task, throughput)
    chunks = plan(items, strategy)
    log.info(f'  Avg seconds / item (estimated) = {throughput.avg_seconds_per_item:.2f}')
    log.info(f'  Target unit length = {target_minutes} minutes with {cpus_per_task} cpus')
    log.info(f'  Items per chunk = {strategy.items_per_chunk()}; {len(chunks)} chunks')

    log.info(f'[3/4] Creating chunk files in {layout.chunk_dir}')
    chunk_files = write_chunk_files(layout.chunk_dir, chunks)

    budget_minutes = cfg.time_budget_minutes(target_minutes)
    stale_lock_seconds = stale_lock_minutes * 60 if stale_lock_minutes is not None \
        else cfg.default_stale_lock_seconds(budget_minutes)

    run_config = RunConfig(
        vector_file=str(vector_file),
        mosaic=str(mosaic),
        output_dir=str(output_dir),
        chunk_files=[str(path) for path in chunk_files],
        layer=layer,
        id_column=id_column,
        cpus_per_task=cpus_per_task,
        time_budget_minutes=budget_minutes,
        stale_lock_seconds=stale_lock_seconds,
        reclaim_stale_locks=reclaim_stale_locks,
        verify_rasters=verify_rasters,
    )
    log.info(f'[4/4] Writing run configuration to {layout.run_config}')
    run_config.save(layout.run_config)

    return ArrayPlan(items, chunks, strategy, run_config, format_walltime(budget_minutes))


def log_summary(array_plan: ArrayPlan, concurrency: int):
    layout = array_plan.run_config.layout
    log.info('Summary:')
    log.info(f'  Total HUCs:            {len(array_plan.items)}')
    log.info(f'  Items per chunk:       {array_plan.items_per_chunk}')
    log.info(f'  Array size:            {len(array_plan.chunks)}')
    log.info(f'  Concurrency ceiling:   {concurrency}')
    log.info(f'  Time limit per unit:   {array_plan.walltime}')
    log.info(f'  Stale lock threshold:  {array_plan.run_config.stale_lock_seconds:.0f}s')
    log.info(f'  Run configuration:     {layout.run_config}')
    log.info(f'  Status dir:            {layout.status_dir}')
    log.info(f'  Lock dir:              {layout.lock_dir}')
    log.info(f'  Logs dir:              {layout.log_dir}')


def make_dispatcher(scheduler: str, array_plan: ArrayPlan, job_name: str = cfg.JOB_NAME, mem: str = cfg.SBATCH_MEM,
                    partition: Optional[str] = None, sbatch_args: Sequence[str] = ()) -> Dispatcher:
    layout = array_plan.run_config.layout
    if scheduler == 'slurm':
        return SlurmDispatcher(
            layout.run_config, walltime=array_plan.walltime, cpus_per_task=array_plan.run_config.cpus_per_task,
            mem=mem, job_name=job_name, log_dir=layout.log_dir, partition=partition, extra_args=sbatch_args,
        )
    if scheduler == 'local':
        return LocalDispatcher(layout.run_config)
    raise ValueError(f'Unknown scheduler: {scheduler}')


def main():
    parser = argparse.ArgumentParser(
        description=__doc__,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('vector_file', type=Path, help='Merged WBD HUC12 GeoPackage')
    parser.add_argument('mosaic', type=Path, help='DEM mosaic (VRT) to clip')
    parser.add_argument('output_dir', type=Path, help='Directory for the clipped DEMs and the run state')

    parser.add_argument('--layer', default=cfg.HUC_LAYER_NAME, help='Layer holding the HUC12 polygons')
    parser.add_argument('--id-column', default=cfg.HUC_ID_FIELD, help='HUC12 ID column')
    parser.add_argument('--query-backend', choices=['ogrinfo', 'ogr'], default='ogrinfo',
                        help='Enumerate HUC12 IDs with the ogrinfo command or in-process with OGR')

    parser.add_argument('--minutes', type=int, default=cfg.TARGET_MINUTES, help='Target run time of each unit')
    parser.add_argument('--cpus-per-task', type=int, default=cfg.CPUS_PER_TASK,
                        help='CPUs (concurrent clips) per unit')
    parser.add_argument('--concurrency', type=int, default=cfg.CONCURRENCY,
                        help='Maximum number of units running at once')
    parser.add_argument('--chunk-size', type=int,
                        help='Use a fixed number of HUC12s per chunk instead of sizing chunks by --minutes')
    parser.add_argument('--avg-seconds-per-item', type=float,
                        help='Average seconds one CPU spends clipping one HUC12. If not specified, it is '
                             f'estimated from a prior run of {cfg.PRIOR_CORES} cores for {cfg.PRIOR_HOURS:g} hours '
                             f'over {cfg.PRIOR_TOTAL_ITEMS} HUC12s')
    parser.add_argument('--use-observed-throughput', action='store_true',
                        help='Size chunks from clip timings recorded by previous runs, when enough are available')

    parser.add_argument('--scheduler', choices=['slurm', 'local'], default='slurm', help='Where to run the units')
    parser.add_argument('--job-name', default=cfg.JOB_NAME, help='Slurm job name')
    parser.add_argument('--mem', default=cfg.SBATCH_MEM, help='Slurm memory per unit')
    parser.add_argument('--partition', help='Slurm partition')
    parser.add_argument('--sbatch-arg', action='append', default=[], dest='sbatch_args',
                        help='Extra sbatch argument, e.g. --sbatch-arg=--mail-type=END,FAIL; may be repeated')

    parser.add_argument('--stale-lock-minutes', type=float,
                        help='Age after which an item lock is considered abandoned. If not specified, the unit '
                             f'time limit plus {cfg.STALE_LOCK_MARGIN_MINUTES} minutes')
    parser.add_argument('--skip-stale-locks', action='store_true',
                        help='Skip items with abandoned locks instead of reclaiming them')
    parser.add_argument('--verify-rasters', action='store_true',
                        help='Open completed DEMs with GDAL when checking whether a HUC12 is done')
    parser.add_argument('--dry-run', action='store_true', help='Plan and report, but do not submit')
    parser.add_argument('-v', '--verbose', action='store_true', help='Turn on verbose logging')
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(stream=sys.stdout, format='%(asctime)s - %(levelname)s - %(message)s', level=level)
    log.debug(' '.join(sys.argv))

    throughput = Throughput(args.avg_seconds_per_item) if args.avg_seconds_per_item is not None else None
    try:
        array_plan = plan_array(
            args.vector_file, args.mosaic, args.output_dir, layer=args.layer, id_column=args.id_column,
            query_backend=args.query_backend, target_minutes=args.minutes, cpus_per_task=args.cpus_per_task,
            chunk_size=args.chunk_size, throughput=throughput, use_observed_throughput=args.use_observed_throughput,
            stale_lock_minutes=args.stale_lock_minutes, reclaim_stale_locks=not args.skip_stale_locks,
            verify_rasters=args.verify_rasters,
        )
        log_summary(array_plan, args.concurrency)

        if args.dry_run:
            log.info('[DRY RUN] Not submitting array')
            return

        dispatcher = make_dispatcher(args.scheduler, array_plan, job_name=args.job_name, mem=args.mem,
                                     partition=args.partition, sbatch_args=args.sbatch_args)
        handle: SubmissionHandle = dispatcher.dispatch(len(array_plan.chunks), args.concurrency)
    except HucToolsError as e:
        log.error(e)
        sys.exit(1)

    if handle.scheduler == 'slurm':
        log.info(f"Submitted. Use 'squeue -j {handle.job_id}' to monitor, and inspect "
                 f'{array_plan.run_config.layout.log_dir} for logs.')
    log.info('Re-run this script at any time; completed HUC12s are skipped via their done markers.')


if __name__ == '__main__':
    main()
