# cli/main.py
import json
import sys

import click
from rich.console import Console
from rich.table import Table

from nat.config import DEFAULT_PORT, DEFAULT_RETRIES, DEFAULT_TIMEOUT, Framing, TransactionConfig, parse_method
from nat.errors import StunError, StunTimeout
from nat.stun_client import StunClient
from nat.stun_status import attribute_name, status_message
from util import log as logmod

console = Console()


@click.group()
def cli():
    """[bold green]STUN client[/bold green] - discover your public address and port"""
    pass


@cli.command()
@click.argument("host", envvar="STUN_SERVER")
@click.option("--port", "-p", type=int, default=DEFAULT_PORT, show_default=True, envvar="STUN_PORT")
@click.option("--proto", type=click.Choice(["udp", "tcp"]), default="udp", show_default=True, envvar="STUN_PROTO")
@click.option("--local-address", default=None, envvar="STUN_LOCAL_ADDRESS", help="Bind to this local address first.")
@click.option("--local-port", type=int, default=0, envvar="STUN_LOCAL_PORT")
@click.option("--retries", type=int, default=DEFAULT_RETRIES, show_default=True, envvar="STUN_RETRIES")
@click.option("--timeout", type=float, default=DEFAULT_TIMEOUT, show_default=True, envvar="STUN_TIMEOUT",
              help="Seconds to wait after each send.")
@click.option("--method", default="0001", show_default=True, help="Message type, hex.")
@click.option("--data", default="", help="Payload to append to the request.")
@click.option("--rfc5389", is_flag=True, help="Send an RFC 5389 request (magic cookie, XOR-MAPPED-ADDRESS).")
@click.option("--fingerprint", is_flag=True, help="Add FINGERPRINT (with --rfc5389).")
@click.option("--verify-tid", is_flag=True, help="Ignore replies whose transaction id differs.")
@click.option("--strict-recv", is_flag=True, help="Fail on receive errors instead of retrying.")
@click.option("--json", "as_json", is_flag=True, help="Print the decoded response as JSON.")
@click.option("--verbose", "-v", is_flag=True, help="Emit JSON log lines on stderr.")
def query(host, port, proto, local_address, local_port, retries, timeout, method, data,
          rfc5389, fingerprint, verify_tid, strict_recv, as_json, verbose):
    """Send a binding request to HOST and print the mapped address"""
    logmod.set_enabled(verbose)
    if fingerprint and not rfc5389:
        raise click.UsageError("--fingerprint needs --rfc5389; classic requests carry no attributes")
    try:
        config = TransactionConfig(
            server_host=host,
            server_port=port,
            local_address=local_address,
            local_port=local_port,
            protocol=proto,
            retries=retries,
            timeout=timeout,
            method=parse_method(method),
            payload=data,
            framing=Framing.RFC5389 if rfc5389 else Framing.CLASSIC,
            verify_transaction_id=verify_tid,
            receive_errors_fatal=strict_recv,
            fingerprint=fingerprint,
        )
        client = StunClient(config)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    try:
        result = client.run()
    except StunTimeout as e:
        console.print(f"[red]timeout:[/red] {e}", highlight=False)
        sys.exit(1)
    except StunError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e}", highlight=False)
        sys.exit(2)

    record = result.to_dict()
    if as_json:
        click.echo(json.dumps(record))
        return

    table = Table(title=f"STUN response from {result.server[0]}:{result.server[1]}")
    table.add_column("field", style="cyan")
    table.add_column("value")
    for key, value in record.items():
        if key == "message_type":
            value = f"{value:#06x} ({status_message(value) or 'unknown'})"
        elif key == "attr_type":
            value = f"{value:#06x} ({attribute_name(value) or 'unknown'})"
        table.add_row(key, str(value))
    console.print(table)
    console.print(f"[green]mapped address:[/green] {result.address}:{result.port}", highlight=False)


@cli.command()
@click.argument("code")
def status(code):
    """Look up the name of a message type, e.g. 0001"""
    name = status_message(code)
    if name is None:
        console.print(f"[yellow]unknown message type {code}[/yellow]")
        sys.exit(1)
    console.print(name, highlight=False)


if __name__ == "__main__":
    cli()
