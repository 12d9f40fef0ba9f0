# cardledger/cli/main.py
import logging
import sys
from contextlib import contextmanager

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..abi import encode_call
from ..client import LedgerClient
from ..config import LedgerConfig
from ..errors import LedgerError
from ..ledger import CardsLedger
from ..runtime import Runtime

console = Console()


@contextmanager
def _session(config):
    """Open the persisted runtime, save it if the block succeeds."""
    runtime, storage_backend = Runtime.open(config)
    try:
        yield runtime
        runtime.save(storage_backend)
    finally:
        storage_backend.close()


def _fail(message):
    console.print(f"[bold red]Error:[/bold red] {message}")
    sys.exit(1)


def _signed(fn):
    """Add the --proxy / --as options shared by every ledger command."""
    fn = click.option('--as', 'signer', required=True, envvar='CARDLEDGER_SIGNER',
                      help='Account sending the call')(fn)
    fn = click.option('--proxy', required=True, envvar='CARDLEDGER_PROXY',
                      help='Proxy address')(fn)
    return fn


def _call(config, proxy, signer, selector, *args):
    """Send one call through the proxy and return the decoded result."""
    try:
        with _session(config) as runtime:
            return LedgerClient(runtime, proxy, signer).call(selector, *args)
    except LedgerError as e:
        _fail(e.reason)


def _pairs(values, label):
    """Split ``ID=VALUE`` arguments into two parallel lists."""
    ids, rest = [], []
    for item in values:
        token, sep, value = item.partition('=')
        if not sep:
            raise click.BadParameter(f"expected ID={label}, got {item!r}")
        try:
            ids.append(int(token))
        except ValueError:
            raise click.BadParameter(f"token id must be an integer, got {token!r}")
        rest.append(value)
    return ids, rest


@click.group()
@click.version_option(version=__version__, prog_name="cardledger")
@click.option('--db', type=click.Path(dir_okay=False), default=None,
              help='SQLite state file (default: $CARDLEDGER_DB or cardledger.db)')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, db, verbose):
    """cardledger - Upgradeable ledger of collectible cards"""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    try:
        ctx.obj = LedgerConfig.from_env(db_path=db)
    except LedgerError as e:
        _fail(e.reason)


# ── Deployment & upgrades ──────────────────────────────────────────────

@cli.command()
@click.option('--owner', required=True, help='Ledger owner and proxy owner')
@click.option('--name', 'name_', required=True, help='Collection name')
@click.option('--symbol', required=True, help='Collection symbol')
@click.pass_obj
def deploy(config, owner, name_, symbol):
    """Deploy a ledger behind a new proxy and initialize it"""
    try:
        with _session(config) as runtime:
            implementation = runtime.deploy(CardsLedger.from_config(config))
            proxy = runtime.deploy_proxy(owner)
            proxy.upgrade_to_and_call(
                owner, implementation, encode_call("initialize", owner, name_, symbol)
            )
    except LedgerError as e:
        _fail(e.reason)

    console.print(f"✅ [bold green]Deployed[/bold green] {name_} ({symbol})")
    console.print(f"implementation: {implementation}")
    console.print(f"proxy: {proxy.address}")


@cli.command()
@_signed
@click.pass_obj
def upgrade(config, proxy, signer):
    """Deploy fresh ledger logic and point the proxy at it"""
    try:
        with _session(config) as runtime:
            implementation = runtime.deploy(CardsLedger.from_config(config))
            LedgerClient(runtime, proxy, signer).upgrade_to(implementation)
            version = len(runtime.get_proxy(proxy).history())
    except LedgerError as e:
        _fail(e.reason)
    console.print(f"✅ [bold green]Upgraded[/bold green] {proxy} → {implementation} (v{version})")


@cli.command()
@_signed
@click.argument('state', type=click.Choice(['on', 'off']), required=False)
@click.pass_obj
def maintenance(config, proxy, signer, state):
    """Show or set the proxy maintenance flag"""
    if state is None:
        flag = _call(config, proxy, signer, "maintenance")
    else:
        flag = state == 'on'
        _call(config, proxy, signer, "set_maintenance", flag)
    console.print(f"maintenance: {'on' if flag else 'off'}")


# ── Minting & roles ────────────────────────────────────────────────────

@cli.command()
@_signed
@click.argument('token_id', type=int)
@click.argument('uri')
@click.pass_obj
def mint(config, proxy, signer, token_id, uri):
    """Mint one card to the ledger owner"""
    _call(config, proxy, signer, "mint", token_id, uri)
    console.print(f"✅ [bold green]Minted[/bold green] #{token_id}")


@cli.command('bundle-mint')
@_signed
@click.argument('pairs', nargs=-1, required=True)
@click.pass_obj
def bundle_mint(config, proxy, signer, pairs):
    """Mint many cards, given as ID=URI pairs"""
    token_ids, uris = _pairs(pairs, 'URI')
    _call(config, proxy, signer, "bundle_mint", token_ids, uris)
    console.print(f"✅ [bold green]Minted[/bold green] {len(token_ids)} cards")


@cli.command('set-uri')
@_signed
@click.argument('token_id', type=int)
@click.argument('uri')
@click.pass_obj
def set_uri(config, proxy, signer, token_id, uri):
    """Replace the metadata URI of a card"""
    _call(config, proxy, signer, "set_token_uri", token_id, uri)
    console.print(f"✅ [bold green]URI set[/bold green] for #{token_id}")


@cli.command('add-minter')
@_signed
@click.argument('account')
@click.pass_obj
def add_minter(config, proxy, signer, account):
    """Grant the minter role"""
    _call(config, proxy, signer, "add_minter", account)
    console.print(f"✅ [bold green]Minter added[/bold green] {account}")


@cli.command('renounce-minter')
@_signed
@click.pass_obj
def renounce_minter(config, proxy, signer):
    """Give up the caller's minter role"""
    _call(config, proxy, signer, "renounce_minter")
    console.print(f"✅ [bold green]Minter removed[/bold green] {signer}")


# ── Transfers, approvals & burning ─────────────────────────────────────

@cli.command()
@_signed
@click.argument('from_addr')
@click.argument('to_addr')
@click.argument('token_id', type=int)
@click.pass_obj
def transfer(config, proxy, signer, from_addr, to_addr, token_id):
    """Transfer one card"""
    _call(config, proxy, signer, "transfer_from", from_addr, to_addr, token_id)
    console.print(f"✅ [bold green]Transferred[/bold green] #{token_id} to {to_addr}")


@cli.command('batch-transfer')
@_signed
@click.argument('from_addr')
@click.argument('to_addr')
@click.argument('token_ids', type=int, nargs=-1, required=True)
@click.pass_obj
def batch_transfer(config, proxy, signer, from_addr, to_addr, token_ids):
    """Transfer many cards from one holder to one recipient"""
    _call(config, proxy, signer, "batch_transfer_from", from_addr, to_addr, list(token_ids))
    console.print(f"✅ [bold green]Transferred[/bold green] {len(token_ids)} cards to {to_addr}")


@cli.command('bundle-transfer')
@_signed
@click.argument('pairs', nargs=-1, required=True)
@click.pass_obj
def bundle_transfer(config, proxy, signer, pairs):
    """Distribute the minter's cards, given as ID=RECIPIENT pairs"""
    token_ids, recipients = _pairs(pairs, 'RECIPIENT')
    _call(config, proxy, signer, "bundle_transfer", recipients, token_ids)
    console.print(f"✅ [bold green]Distributed[/bold green] {len(token_ids)} cards")


@cli.command()
@_signed
@click.argument('token_ids', type=int, nargs=-1, required=True)
@click.pass_obj
def burn(config, proxy, signer, token_ids):
    """Burn cards held by the minter"""
    _call(config, proxy, signer, "bundle_burn", list(token_ids))
    console.print(f"🔥 [bold green]Burned[/bold green] {len(token_ids)} cards")


@cli.command()
@_signed
@click.argument('operator')
@click.argument('token_id', type=int)
@click.pass_obj
def approve(config, proxy, signer, operator, token_id):
    """Approve an operator for one card"""
    _call(config, proxy, signer, "approve", operator, token_id)
    console.print(f"✅ [bold green]Approved[/bold green] {operator} for #{token_id}")


@cli.command('set-approval-for-all')
@_signed
@click.argument('operator')
@click.option('--revoke', is_flag=True, help='Clear the approval instead of granting it')
@click.pass_obj
def set_approval_for_all(config, proxy, signer, operator, revoke):
    """Grant or revoke an operator over all of the caller's cards"""
    _call(config, proxy, signer, "set_approval_for_all", operator, not revoke)
    verb = "Revoked" if revoke else "Approved"
    console.print(f"✅ [bold green]{verb}[/bold green] operator {operator}")


# ── Queries ────────────────────────────────────────────────────────────

@cli.command('owner-of')
@_signed
@click.argument('token_id', type=int)
@click.pass_obj
def owner_of(config, proxy, signer, token_id):
    """Show the holder of a card"""
    console.print(_call(config, proxy, signer, "owner_of", token_id))


@cli.command()
@_signed
@click.argument('account')
@click.pass_obj
def balance(config, proxy, signer, account):
    """Show how many cards an account holds"""
    console.print(_call(config, proxy, signer, "balance_of", account))


@cli.command('token-uri')
@_signed
@click.argument('token_id', type=int)
@click.pass_obj
def token_uri(config, proxy, signer, token_id):
    """Show the metadata URI of a card"""
    console.print(_call(config, proxy, signer, "token_uri", token_id))


@cli.command()
@_signed
@click.pass_obj
def info(config, proxy, signer):
    """Show a ledger's metadata and upgrade history"""
    try:
        with _session(config) as runtime:
            client = LedgerClient(runtime, proxy, signer)
            proxy_info = runtime.get_proxy(proxy).get_info()
            details = {
                "Name": client.name(),
                "Symbol": client.symbol(),
                "Owner": client.owner(),
                "Total supply": str(client.total_supply()),
                "Proxy owner": proxy_info["proxy_owner"],
                "Implementation": proxy_info["implementation"],
                "Maintenance": "on" if proxy_info["maintenance"] else "off",
                "Storage keys": str(proxy_info["storage_keys"]),
            }
            history = proxy_info["versions"]
    except LedgerError as e:
        _fail(e.reason)

    body = "\n".join(f"[bold]{k}:[/bold] {v}" for k, v in details.items())
    console.print(Panel(body, title=f"Ledger {proxy}", border_style="blue"))

    table = Table(title="Implementations")
    table.add_column("Version", style="cyan")
    table.add_column("Address", style="green")
    table.add_column("Code", style="yellow")
    table.add_column("Upgraded by", style="yellow")
    for record in history:
        table.add_row(str(record.version), record.address, record.code_name, record.caller)
    console.print(table)


if __name__ == "__main__":
    cli()
