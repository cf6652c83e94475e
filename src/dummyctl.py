#!/usr/bin/env python3
"""
CLI tool for the Dummy operator.
Talks to the operator's admin API: health checks, queue, manual reconciles and
the watch event stream.
"""

import json
import os

import click
import requests
import yaml
from tabulate import tabulate

API_BASE_URL = os.getenv("DUMMY_OPERATOR_API_URL", "http://localhost:8081")


class DummyOperatorCLI:
    """CLI client for the Dummy operator API"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, timeout=10, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if getattr(e, "response", None) is not None:
                try:
                    click.echo(f"Detail: {e.response.json()}", err=True)
                except ValueError:
                    click.echo(f"Response: {e.response.text}", err=True)
            return None

    def stream_events(self, kind=None):
        """Yield decoded events from the SSE stream"""
        params = {"kind": kind} if kind else None
        with requests.get(
            f"{self.base_url}/api/v1/events", params=params, stream=True, timeout=None
        ) as response:
            response.raise_for_status()
            for line in response.iter_lines(decode_unicode=True):
                if line and line.startswith("data: "):
                    yield json.loads(line[len("data: ") :])


def _emit(data, output):
    if output == "yaml":
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
    else:
        click.echo(json.dumps(data, indent=2))


@click.group()
@click.option(
    "--api-url",
    default=API_BASE_URL,
    show_default=True,
    help="Base URL of the operator API",
)
@click.pass_context
def cli(ctx, api_url):
    """Dummy operator CLI"""
    ctx.obj = DummyOperatorCLI(api_url)


@cli.command()
@click.pass_obj
def health(client):
    """Show liveness and readiness of the operator"""
    live = client._make_request("GET", "/healthz")
    try:
        ready = requests.get(f"{client.base_url}/readyz", timeout=10).ok
    except requests.exceptions.RequestException:
        ready = False

    rows = [
        ["live", "✓" if live else "✗"],
        ["ready", "✓" if ready else "✗"],
    ]
    click.echo(tabulate(rows, headers=["Check", "Status"], tablefmt="grid"))


@cli.command()
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_obj
def reconcilers(client, output):
    """List registered reconcilers"""
    result = client._make_request("GET", "/api/v1/reconcilers")
    if result is None:
        return

    if output != "table":
        _emit(result, output)
        return

    rows = [[r["name"], r["kind"], ", ".join(r.get("owns", []))] for r in result]
    click.echo(tabulate(rows, headers=["Name", "Kind", "Owns"], tablefmt="grid"))


@cli.command()
@click.pass_obj
def queue(client):
    """Show work queue depth"""
    result = client._make_request("GET", "/api/v1/queue")
    if result:
        click.echo(f"Depth: {result['depth']}")
        click.echo(f"Running: {result['running']}")


@cli.command()
@click.argument("namespace")
@click.argument("name")
@click.option("--kind", default="Dummy", show_default=True)
@click.pass_obj
def reconcile(client, namespace, name, kind):
    """Manually trigger reconciliation for a resource"""
    result = client._make_request(
        "POST", f"/api/v1/reconcile/{namespace}/{name}", params={"kind": kind}
    )
    if result:
        click.echo(f"Reconciliation triggered for {kind} {namespace}/{name}")


@cli.command()
@click.option("--kind", default=None, help="Only show events for this kind")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_obj
def watch(client, kind, output):
    """Follow watch events from the operator"""
    try:
        for event in client.stream_events(kind):
            if output != "table":
                _emit(event, output)
                continue
            row = [
                event["timestamp"],
                event["event_type"],
                event["kind"],
                f"{event['namespace']}/{event['name']}",
            ]
            click.echo(tabulate([row], tablefmt="plain"))
    except requests.exceptions.RequestException as e:
        click.echo(f"Error: {e}", err=True)
    except KeyboardInterrupt:
        click.echo("\nStopped following")


if __name__ == "__main__":
    cli()
