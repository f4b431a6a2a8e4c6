import asyncio, logging, os, signal
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.rpc_httpx import HttpxLedgerClient
from ..adapters.sink_console import ConsoleSink
from ..adapters.sink_webhook import WebhookSink
from ..application.use_cases import (
    build_polling_monitor, build_sink, build_streaming_monitor,
    close_sink, sample_mint, scan_recent_mints,
)
from ..config import MonitorConfig
from ..domain.errors import ConfigError, SinkError, TransportError

app = typer.Typer(help="Watch an ERC-721 contract for mints and forward them to a sink.")
console = Console()

ContractOpt = typer.Option(None, "--contract", help="Contract address [env: MINTWATCH_CONTRACT_ADDRESS]")
RpcOpt      = typer.Option(None, "--rpc", help="RPC endpoint URL [env: MINTWATCH_RPC_ENDPOINT]")
WebhookOpt  = typer.Option(None, "--webhook-url", help="POST mints here instead of printing them [env: MINTWATCH_WEBHOOK_URL]")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", help="DEBUG, INFO, WARNING, ERROR"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="dotenv file to load (default: ./.env)"),
) -> None:
    load_dotenv(env_file)
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _load(**overrides) -> MonitorConfig:
    try:
        return MonitorConfig.from_env(**overrides)
    except ConfigError as e:
        console.print(f"[red]config error:[/] {e}")
        raise typer.Exit(code=2)


def _run_until_signal(monitor, coro) -> None:
    async def runner():
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, monitor.stop)
            except NotImplementedError:  # windows
                pass
        await coro
    asyncio.run(runner())


@app.command()
def poll(
    contract: Optional[str] = ContractOpt,
    rpc: Optional[str] = RpcOpt,
    start_height: Optional[int] = typer.Option(None, "--start-height", help="Treat this block as already processed"),
    interval_ms: Optional[int] = typer.Option(None, "--interval-ms", help="Poll interval [default 15000]"),
    webhook_url: Optional[str] = WebhookOpt,
):
    """Poll eth_getLogs on a fixed interval (HTTP endpoint)."""
    cfg = _load(contract_address=contract, rpc_endpoint=rpc, start_height=start_height,
                poll_interval_ms=interval_ms, webhook_url=webhook_url)

    async def go(monitor):
        try:
            await monitor.run(cfg.poll_interval_ms / 1000)
        finally:
            await close_sink(monitor.sink)

    try:
        monitor = build_polling_monitor(cfg, build_sink(cfg))
    except ConfigError as e:
        console.print(f"[red]config error:[/] {e}")
        raise typer.Exit(code=2)
    console.print(f"[bold]polling[/] {cfg.contract_address} every {cfg.poll_interval_ms/1000:.0f}s")
    _run_until_signal(monitor, go(monitor))


@app.command()
def stream(
    contract: Optional[str] = ContractOpt,
    rpc: Optional[str] = RpcOpt,
    backfill_endpoint: Optional[str] = typer.Option(
        None, "--backfill-endpoint",
        help="HTTP endpoint used to re-scan missed blocks after a reconnect [env: MINTWATCH_BACKFILL_ENDPOINT]"),
    webhook_url: Optional[str] = WebhookOpt,
):
    """Subscribe to Transfer logs over a websocket, reconnecting with backoff."""
    cfg = _load(contract_address=contract, rpc_endpoint=rpc,
                backfill_endpoint=backfill_endpoint, webhook_url=webhook_url)

    async def go(monitor):
        try:
            await monitor.run()
        finally:
            await close_sink(monitor.sink)

    try:
        monitor = build_streaming_monitor(cfg, build_sink(cfg))
    except ConfigError as e:
        console.print(f"[red]config error:[/] {e}")
        raise typer.Exit(code=2)
    console.print(f"[bold]streaming[/] {cfg.contract_address} via {cfg.rpc_endpoint}")
    _run_until_signal(monitor, go(monitor))


@app.command()
def recent(
    contract: Optional[str] = ContractOpt,
    rpc: Optional[str] = RpcOpt,
    lookback: int = typer.Option(8_000, "--lookback", help="Blocks to look back from the tip"),
    limit: int = typer.Option(25, "--limit", help="Show at most this many mints"),
):
    """List recent mints, to compare against what was notified."""
    cfg = _load(contract_address=contract, rpc_endpoint=rpc)

    async def go():
        async with HttpxLedgerClient(cfg.rpc_endpoint, cfg.contract_address, timeout_s=cfg.request_timeout_s) as client:
            return await scan_recent_mints(client, lookback_blocks=lookback, limit=limit, step=cfg.max_block_span)

    try:
        mints = asyncio.run(go())
    except TransportError as e:
        console.print(f"[red]rpc error:[/] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"mints in the last {lookback:,} blocks")
    for col in ("tokenId", "to", "block", "tx"):
        table.add_column(col)
    for m in mints:
        table.add_row(str(m.token_id), m.to_address, f"{m.block_number:,}", m.tx_hash)
    console.print(table)


@app.command("notify-test")
def notify_test(
    token_id: int = typer.Option(9999, "--token-id"),
    webhook_url: Optional[str] = WebhookOpt,
):
    """Send a sample mint through the configured sink."""
    url = webhook_url or os.environ.get("MINTWATCH_WEBHOOK_URL")

    async def go():
        sink = WebhookSink(url) if url else ConsoleSink(console)
        try:
            await sink.notify(sample_mint(token_id))
        finally:
            await close_sink(sink)

    try:
        asyncio.run(go())
    except SinkError as e:
        console.print(f"[red]sink error:[/] {e}")
        raise typer.Exit(code=1)
    console.print("posted a test mint")


if __name__ == "__main__":
    app()
