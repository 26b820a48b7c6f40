import json, asyncio, logging, os, time
from dataclasses import replace

import click
from eth_utils import is_address, to_checksum_address
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    Progress, BarColumn, TextColumn, TimeElapsedColumn,
    TimeRemainingColumn, MofNCompleteColumn, SpinnerColumn
)
from rich.table import Table

from ..adapters.checkpoint_jsonl import JSONLCheckpointStore
from ..adapters.parquet_store import ParquetEventStore
from ..adapters.rpc_httpx import HttpxChainLogSource
from ..application.use_cases import ScrapeSession, report_collected_fees
from ..config import DEFAULT_BATCH_SIZE, DEFAULT_CHAIN_CONFIGS, DEFAULT_MAX_ATTEMPTS, DEFAULT_RPC_TIMEOUT_S, ScrapeSettings
from ..domain.errors import CheckpointInconsistency, FatalScrapeFailure, UnknownChain
from ..domain.value_types import ChainKey, ScrapeStatus

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _stores(data_dir: str) -> tuple[JSONLCheckpointStore, ParquetEventStore]:
    return (
        JSONLCheckpointStore(os.path.join(data_dir, "checkpoints.jsonl")),
        ParquetEventStore(os.path.join(data_dir, "events")),
    )


def _chain_arg(ctx, param, value: str) -> ChainKey:
    try:
        return ChainKey.parse(value)
    except UnknownChain as e:
        raise click.BadParameter(str(e)) from None


def _print_json(payload: dict) -> None:
    console.print_json(json.dumps(payload))


@click.group()
@click.option("--data-dir", envvar="FEESCAN_DATA_DIR", default="feescan_data", show_default=True,
              help="Directory holding checkpoints and event shards")
@click.option("--log-level", envvar="LOG_LEVEL", default="INFO", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.pass_context
def cli(ctx, data_dir, log_level):
    """feescan: incremental scraper and reporter of LI.FI FeeCollector fees."""
    _setup_logging(log_level)
    ctx.obj = {"data_dir": data_dir}


@cli.command("scrape")
@click.argument("chain", callback=_chain_arg)
@click.option("--batch-size", type=int, default=None,
              help=f"Blocks per eth_getLogs request [env SCRAPER_BLOCKS_BATCH_SIZE, default {DEFAULT_BATCH_SIZE}]")
@click.option("--max-attempts", type=int, default=None,
              help=f"Total tries per RPC call before the session aborts [env SCRAPER_MAX_ATTEMPTS, default {DEFAULT_MAX_ATTEMPTS}]")
@click.option("--timeout", "timeout_s", type=int, default=None,
              help=f"RPC timeout in seconds [env SCRAPER_RPC_TIMEOUT, default {DEFAULT_RPC_TIMEOUT_S}]")
@click.option("--max-seconds", type=float, default=None,
              help="Stop at the first batch boundary after this many seconds")
@click.pass_obj
def scrape_cmd(obj, chain, batch_size, max_attempts, timeout_s, max_seconds):
    """Scan CHAIN from its last checkpoint up to the chain head."""
    overrides = {k: v for k, v in (("batch_size", batch_size), ("max_attempts", max_attempts),
                                   ("rpc_timeout_s", timeout_s)) if v is not None}
    try:
        settings = replace(ScrapeSettings.from_env(), **overrides)
    except ValueError as e:
        raise click.BadParameter(str(e)) from None
    checkpoints, events = _stores(obj["data_dir"])
    session = ScrapeSession(
        log_source_factory=lambda cfg: HttpxChainLogSource(cfg.rpc_endpoint, timeout_s=settings.rpc_timeout_s),
        checkpoints=checkpoints,
        events=events,
        settings=settings,
    )
    deadline = time.monotonic() + max_seconds if max_seconds is not None else None

    progress = Progress(SpinnerColumn(),
                        TextColumn(f"[bold]scanning {chain.value}[/]"),
                        BarColumn(),
                        MofNCompleteColumn(),
                        TextColumn("•"),
                        TimeElapsedColumn(),
                        TextColumn("→"),
                        TimeRemainingColumn(),
                        TextColumn(" • {task.description}"),
                        console=err_console,
                        transient=True,
                        )
    task = progress.add_task(description="resolving head", total=None)
    found = 0

    def on_plan(batches):
        progress.update(task, total=len(batches),
                        description=f"{batches[0].start:,}-{batches[-1].end:,}")

    def on_batch(br, n):
        nonlocal found
        found += n
        progress.update(task, advance=1, description=f"block {br.end:,} • {found} events")

    try:
        with progress:
            res = asyncio.run(session.run(chain, deadline=deadline, on_plan=on_plan, on_batch=on_batch))
    except UnknownChain as e:
        _print_json({"message": str(e), "error": "UnknownChain"})
        raise SystemExit(2)
    except FatalScrapeFailure as e:
        logger.error("Scraping session on chain '%s' ABORTED: %s", chain.value, e)
        _print_json({
            "message": str(e),
            "error": type(e.__cause__ or e).__name__,
            "chainKey": e.chain_key,
            "operation": e.operation,
            "blockRange": list(e.block_range) if e.block_range else None,
        })
        raise SystemExit(1)
    _print_json(res.to_dict())


@cli.command("report")
@click.argument("integrator")
@click.pass_obj
def report_cmd(obj, integrator):
    """Sum fees collected by INTEGRATOR (an address), per chain and token."""
    if not is_address(integrator):
        raise click.BadParameter(f"'{integrator}' is not an Ethereum address", param_hint="INTEGRATOR")
    _, events = _stores(obj["data_dir"])
    report = asyncio.run(report_collected_fees(events, to_checksum_address(integrator)))
    _print_json(report.to_dict())


@cli.command("chains")
@click.pass_obj
def chains_cmd(obj):
    """List stored scraping configs, and defaults not scraped yet."""
    checkpoints, _ = _stores(obj["data_dir"])
    stored = {c.chain_key: c for c in asyncio.run(checkpoints.all())}

    table = Table(title="FeeCollector chains")
    for col in ("chain", "status", "tag", "contract", "block start", "last scanned", "source"):
        table.add_column(col, no_wrap=col != "contract", overflow="fold")
    for key in ChainKey:
        cfg = stored.get(key) or DEFAULT_CHAIN_CONFIGS.get(key)
        if cfg is None:
            continue
        last = "-" if cfg.last_scanned_block is None else f"{cfg.last_scanned_block:,}"
        table.add_row(key.value, cfg.status.value, cfg.finality_tag.value, cfg.contract_address,
                      f"{cfg.block_start:,}", last, "stored" if key in stored else "default")
    console.print(table)


def _set_status(data_dir: str, chain: ChainKey, status: ScrapeStatus) -> None:
    checkpoints, _ = _stores(data_dir)

    async def run():
        if await checkpoints.get_by_chain(chain) is None:
            default = DEFAULT_CHAIN_CONFIGS.get(chain)
            if default is None:
                raise UnknownChain(chain.value)
            await checkpoints.create(chain, default)
        return await checkpoints.set_status(chain, status)

    try:
        cfg = asyncio.run(run())
    except (UnknownChain, CheckpointInconsistency) as e:
        raise click.ClickException(str(e))
    console.print(f"[bold]{cfg.chain_key.value}[/]: scraping {cfg.status.value}")


@cli.command("enable")
@click.argument("chain", callback=_chain_arg)
@click.pass_obj
def enable_cmd(obj, chain):
    """Allow scraping sessions on CHAIN."""
    _set_status(obj["data_dir"], chain, ScrapeStatus.ACTIVE)


@cli.command("disable")
@click.argument("chain", callback=_chain_arg)
@click.pass_obj
def disable_cmd(obj, chain):
    """Halt scraping sessions on CHAIN; they return 'halted' without touching the RPC."""
    _set_status(obj["data_dir"], chain, ScrapeStatus.INACTIVE)


if __name__ == "__main__":
    cli()
