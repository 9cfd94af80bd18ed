"""
XIP CLI - Command Line Interface for the cross-chain intent protocol

Main entry point for all CLI commands.
"""

import json
import click
from pathlib import Path

from xip.utils.logger import setup_logging, get_logger

logger = get_logger("cli")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (default: XIP_DATA_DIR or ~/.xip)")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, data_dir):
    """XIP - Cross-chain intents settled by competing solvers"""
    import logging
    from xip.core.config import data_dir_from_env

    # LOG_LEVEL from the environment applies unless --debug is given
    setup_logging(level=logging.DEBUG if debug else None)

    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["data_dir_given"] = data_dir is not None
    ctx.obj["data_dir"] = Path(data_dir).expanduser() if data_dir else data_dir_from_env()
    ctx.obj["data_dir"].mkdir(parents=True, exist_ok=True)


def _format_tokens(amount: int) -> str:
    from xip.core.config import ONE_TOKEN

    return f"{amount / ONE_TOKEN:,.4f}"


# =============================================================================
# Relayer Commands
# =============================================================================


@cli.group()
def relayer():
    """Relayer service commands"""
    pass


@relayer.command("start")
@click.option("--host", default=None, help="Bind address (default: RELAYER_HOST or 0.0.0.0)")
@click.option("--port", default=None, type=int, help="HTTP port (default: PORT or 3000)")
@click.option("--with-solver", is_flag=True, help="Also run a solver against the same local chains")
@click.option("--solver-port", default=3001, help="Solver control API port (with --with-solver)")
@click.pass_context
def relayer_start(ctx, host, port, with_solver, solver_port):
    """Start the relayer API over an in-process development network"""
    import asyncio
    import uvicorn
    from xip.core.config import RelayerConfig, SolverConfig, load_private_key
    from xip.core.errors import InvalidParameters
    from xip.core.storage.storage_manager import RecipientStore
    from xip.crypto import keypair_from_hex
    from xip.devnet import create_devnet
    from xip.relayer.app import create_app
    from xip.relayer.proof import HttpProofVerifier, MockProofVerifier
    from xip.relayer.service import SettlementService

    config = RelayerConfig.from_env()
    host = host or config.host
    port = port or config.port
    if ctx.obj["data_dir_given"]:
        config.data_dir = ctx.obj["data_dir"]

    try:
        relayer_key = load_private_key(required=False)
    except InvalidParameters as e:
        click.echo(f"❌ {e.message}", err=True)
        raise SystemExit(1)
    devnet = create_devnet(relayer=keypair_from_hex(relayer_key) if relayer_key else None)

    if config.proof_api_key:
        verifier = HttpProofVerifier(
            config.proof_api_url,
            config.proof_api_key,
            proof_type=config.proof_type,
            timeout=config.proof_timeout,
        )
        click.echo(f"🔐 Proof service: {config.proof_api_url}")
    else:
        verifier = MockProofVerifier()
        click.echo("🔐 Proof service: mock (set PROOF_API_KEY for the real one)")

    store = RecipientStore(config.data_dir, config.store_db_name)
    service = SettlementService(
        devnet.clients_for(devnet.relayer),
        verifier,
        config,
        networks=list(devnet.networks.values()),
    )
    app = create_app(service, store)

    click.echo("🌉 Development network:")
    for chain_id, network in devnet.networks.items():
        click.echo(f"  {network.key}: chain {chain_id}, bridge {network.bridge_address}")
    click.echo(f"  Source token: {devnet.source_token}")
    click.echo(f"  Destination token: {devnet.destination_token}")
    click.echo(f"  Relayer: {devnet.relayer.address}")
    click.echo(f"  Store: {config.data_dir / config.store_db_name}")

    log_level = "debug" if ctx.obj["debug"] else "info"

    async def run():
        servers = [uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level=log_level))]
        engine = None
        if with_solver:
            from xip.solver.app import create_solver_app
            from xip.solver.engine import SolverEngine
            from xip.solver.relayer_client import RelayerClient

            solver_config = SolverConfig.from_env()
            relayer_client = RelayerClient(f"http://127.0.0.1:{port}", solver_config.relayer_timeout)
            engine = SolverEngine(devnet.clients_for(devnet.solver), relayer_client, solver_config)
            servers.append(uvicorn.Server(uvicorn.Config(
                create_solver_app(engine), host=host, port=solver_port, log_level=log_level,
            )))
            click.echo(f"🔧 Solver {devnet.solver.address}, control API on port {solver_port}")
            await engine.start()

        click.echo(f"🚀 Relayer listening on {host}:{port}. Press Ctrl+C to stop.")
        try:
            await asyncio.gather(*(server.serve() for server in servers))
        finally:
            if engine is not None:
                await engine.stop()
                await engine.relayer.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted")
        click.echo("\nRelayer stopped.")


# =============================================================================
# Solver Commands
# =============================================================================


@cli.group()
def solver():
    """Solver commands"""
    pass


@solver.command("status")
@click.option("--url", default="http://localhost:3001", help="Solver control API URL")
def solver_status(url):
    """Show a running solver's state"""
    import httpx

    try:
        resp = httpx.get(f"{url.rstrip('/')}/status", timeout=10)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        click.echo(f"❌ Solver unreachable at {url}: {e}", err=True)
        raise SystemExit(1)

    status = resp.json()
    click.echo(f"Solver at {url}")
    click.echo("-" * 40)
    click.echo(f"  Running: {status['running']}")
    for chain_id, address in status["addresses"].items():
        block = status["lastProcessedBlocks"].get(chain_id, "-")
        click.echo(f"  Chain {chain_id}: {address} (block {block})")
    click.echo(f"  Active intents: {len(status['activeIntents'])}")
    for intent in status["activeIntents"]:
        click.echo(f"    {intent['intentId']}: {intent['phase']} bid {intent['currentBid']}")
    click.echo(f"  Finished intents: {len(status['finishedIntents'])}")


# =============================================================================
# Store Commands
# =============================================================================


@cli.group()
def store():
    """Recipient privacy store commands"""
    pass


def _open_store(ctx):
    from xip.core.storage.storage_manager import RecipientStore

    return RecipientStore(ctx.obj["data_dir"])


@store.command("put")
@click.argument("intent_id")
@click.option("--chain-id", required=True, type=int, help="Destination chain id")
@click.option("--recipient", "-r", "entries", multiple=True, required=True,
              help="ADDRESS:AMOUNT (repeatable)")
@click.pass_context
def store_put(ctx, intent_id, chain_id, entries):
    """Store the recipient split for an intent"""
    from xip.core.errors import XIPError

    recipients, amounts = [], []
    for entry in entries:
        address, sep, amount = entry.partition(":")
        if not sep:
            raise click.BadParameter(f"expected ADDRESS:AMOUNT, got {entry}", param_hint="--recipient")
        recipients.append(address)
        amounts.append(amount)

    manifest_store = _open_store(ctx)
    try:
        manifest = manifest_store.put(intent_id, recipients, amounts, chain_id)
    except XIPError as e:
        click.echo(f"❌ {e.message}", err=True)
        raise SystemExit(1)
    finally:
        manifest_store.close()

    click.echo(f"✓ Stored {len(manifest.recipients)} recipients for intent {manifest.intent_id}")
    click.echo(f"  Total: {manifest.total_amount}")


@store.command("get")
@click.argument("intent_id")
@click.pass_context
def store_get(ctx, intent_id):
    """Show the recipient split of an intent"""
    manifest_store = _open_store(ctx)
    try:
        manifest = manifest_store.get(intent_id)
    finally:
        manifest_store.close()

    if manifest is None:
        click.echo(f"No recipients stored for intent {intent_id}")
        raise SystemExit(1)
    click.echo(json.dumps(manifest.to_dict(), indent=2))


@store.command("list")
@click.pass_context
def store_list(ctx):
    """List intents with stored recipients"""
    manifest_store = _open_store(ctx)
    try:
        intent_ids = manifest_store.list()
    finally:
        manifest_store.close()

    if not intent_ids:
        click.echo("No stored intents.")
        return
    for intent_id in intent_ids:
        click.echo(f"  {intent_id}")


@store.command("delete")
@click.argument("intent_id")
@click.pass_context
def store_delete(ctx, intent_id):
    """Delete the recipient split of an intent"""
    manifest_store = _open_store(ctx)
    try:
        deleted = manifest_store.delete(intent_id)
    finally:
        manifest_store.close()

    if not deleted:
        click.echo(f"No recipients stored for intent {intent_id}")
        raise SystemExit(1)
    click.echo(f"✓ Deleted recipients for intent {intent_id}")


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
@click.option("--auction-duration", default=3, help="Auction length in seconds")
@click.option("--timeout", default=60.0, help="Give up after this many seconds")
@click.pass_context
def demo(ctx, auction_duration, timeout):
    """Run one intent end to end: create, auction, deliver, settle"""
    import asyncio
    import tempfile

    click.echo("=" * 60)
    click.echo("  XIP CROSS-CHAIN INTENT - DEMO")
    click.echo("=" * 60)
    click.echo()

    with tempfile.TemporaryDirectory() as tmp:
        report = asyncio.run(_run_demo(Path(tmp), auction_duration, timeout))

    click.echo()
    click.echo("📊 Final balances:")
    for label, amount in report["balances"].items():
        click.echo(f"  {label}: {_format_tokens(amount)}")
    click.echo()
    if report["completed"]:
        click.echo("✅ Demo complete!")
    else:
        click.echo(f"❌ Demo did not complete: {report['detail']}")
        raise SystemExit(1)


async def _run_demo(data_dir: Path, auction_duration: int, timeout: float) -> dict:
    import asyncio
    import httpx
    from xip.core.config import ONE_TOKEN, RelayerConfig, SolverConfig
    from xip.core.intent.intent import IntentState
    from xip.core.storage.storage_manager import RecipientStore
    from xip.crypto import random_address
    from xip.devnet import create_devnet
    from xip.relayer.app import create_app
    from xip.relayer.proof import MockProofVerifier
    from xip.relayer.service import SettlementService
    from xip.solver.engine import SolverEngine
    from xip.solver.relayer_client import RelayerClient
    from xip.solver.state import BidPhase

    click.echo("📦 Initializing development network...")
    devnet = create_devnet()
    origin, destination = devnet.origin, devnet.destination
    click.echo(f"  ✓ Origin chain {origin.chain_id}, destination chain {destination.chain_id}")

    relayer_config = RelayerConfig(data_dir=data_dir)
    store = RecipientStore(data_dir)
    service = SettlementService(
        devnet.clients_for(devnet.relayer),
        MockProofVerifier(),
        relayer_config,
        networks=list(devnet.networks.values()),
    )
    app = create_app(service, store)
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://relayer")
    click.echo("  ✓ Relayer API mounted in-process")

    solver_config = SolverConfig(
        poll_interval=0.2,
        bid_interval=0.5,
        settle_delay=0.2,
        completion_poll_interval=0.2,
        completion_timeout=10,
        tx_timeout=10,
    )
    engine = SolverEngine(
        devnet.clients_for(devnet.solver),
        RelayerClient("http://relayer", http=http),
        solver_config,
    )
    await engine.start()
    click.echo(f"  ✓ Solver {devnet.solver.address[:10]}... started")
    click.echo()

    # User creates the intent
    user = devnet.clients_for(devnet.user)[origin.chain_id]
    source_amount = 100 * ONE_TOKEN
    reward = 5 * ONE_TOKEN
    expected = 95 * ONE_TOKEN
    click.echo("🎯 User creates an intent: 100 in, 95 expected out, 5 reward...")
    await user.approve_token(devnet.source_token, origin.bridge_address, source_amount + reward)
    receipt = await user.transact(
        "createIntent",
        devnet.source_token,
        devnet.destination_token,
        source_amount,
        expected,
        reward,
        auction_duration,
    )
    intent_id = receipt.result
    click.echo(f"  ✓ Intent {intent_id}")

    recipients = [random_address(), random_address()]
    resp = await http.post("/store-recipients", json={
        "intentId": str(intent_id),
        "recipients": recipients,
        "amounts": [str(60 * ONE_TOKEN), str(35 * ONE_TOKEN)],
        "chainId": destination.chain_id,
    })
    resp.raise_for_status()
    click.echo("  ✓ Recipient split stored with the relayer (60 / 35)")
    click.echo()

    click.echo("⚖️  Waiting for auction, delivery and settlement...")
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while intent_id not in engine.finished and loop.time() < deadline:
        await asyncio.sleep(0.2)

    phase = engine.finished.get(intent_id)
    await engine.stop()
    await http.aclose()
    store.close()

    intent = origin.call("getIntentDetails", intent_id)
    completed = phase == BidPhase.DONE and intent.state == IntentState.COMPLETED
    click.echo(f"  ✓ Solver phase: {phase.name if phase is not None else 'pending'}")
    click.echo(f"  ✓ Intent state: {intent.state.name}, winning bid {_format_tokens(intent.winning_bid)}")

    return {
        "completed": completed,
        "detail": f"phase={phase.name if phase is not None else 'pending'} state={intent.state.name}",
        "balances": {
            "User (origin)": origin.balance_of(devnet.source_token, devnet.user.address),
            "Solver (origin)": origin.balance_of(devnet.source_token, devnet.solver.address),
            "Solver (destination)": destination.balance_of(devnet.destination_token, devnet.solver.address),
            "Recipient 1": destination.balance_of(devnet.destination_token, recipients[0]),
            "Recipient 2": destination.balance_of(devnet.destination_token, recipients[1]),
        },
    }


# =============================================================================
# Stats Command
# =============================================================================


@cli.command("stats")
def stats():
    """Show protocol constants and configured networks"""
    from xip.core.config import RelayerConfig, SolverConfig, load_networks

    solver_config = SolverConfig.from_env()
    relayer_config = RelayerConfig.from_env()

    click.echo("XIP Configuration")
    click.echo("-" * 40)
    for network in load_networks():
        bridge = network.bridge_address or "(not set)"
        click.echo(f"  {network.name}: chain {network.chain_id}, bridge {bridge}")
    click.echo(f"  Min profit margin: {solver_config.min_profit_margin:.2%}")
    click.echo(f"  Max bid: {_format_tokens(solver_config.max_bid_amount)}")
    click.echo(f"  Bid increment: {_format_tokens(solver_config.bid_increment)}")
    click.echo(f"  Proof required on: {sorted(relayer_config.proof_required_chains)}")
    click.echo(f"  Strict proof on /settle: {relayer_config.strict_proof}")


if __name__ == "__main__":
    cli()
