#!/usr/bin/env python3
"""
CLI tool for the Network Operator
Renders State manifests offline and shows reconciliation status
"""

import asyncio
import json
import sys

import click
import requests
import yaml
from tabulate import tabulate

from cluster import DryRunClusterClient
from config import StateConfig
from state.base import SyncStatus
from state.info_catalog import InfoCatalog, InfoType, StaticConfigProvider
from state.registry import StateRegistry, register_builtin_states

API_BASE_URL = "http://localhost:8080/api/v1"


class NetworkOperatorCLI:
    """CLI client for the Network Operator status API"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if hasattr(e, "response") and e.response is not None:
                try:
                    error_detail = e.response.json()
                    click.echo(f"Detail: {error_detail}", err=True)
                except (ValueError, json.JSONDecodeError):
                    click.echo(f"Response: {e.response.text}", err=True)
            return None


def _load_registry() -> StateRegistry:
    registry = StateRegistry()
    register_builtin_states(registry)
    return registry


def _read_policy(filename: str):
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            return yaml.safe_load(f)
        return json.load(f)


@click.group()
def cli():
    """Network Operator CLI - render States and inspect reconciliation status"""
    pass


@cli.command()
@click.argument("state_name")
@click.option(
    "--policy",
    "-p",
    "policy_file",
    required=True,
    type=click.Path(exists=True),
    help="NicClusterPolicy YAML/JSON file",
)
@click.option("--manifests-dir", type=click.Path(exists=True, file_okay=False))
@click.option("--namespace", "-n", help="Operator namespace")
@click.option(
    "--output", "-o", type=click.Choice(["yaml", "json", "table"]), default="yaml"
)
def render(state_name, policy_file, manifests_dir, namespace, output):
    """Render the objects a State would apply for a policy"""
    state_config = StateConfig.from_env()
    registry = _load_registry()
    client = DryRunClusterClient()

    try:
        policy = _read_policy(policy_file)
    except (ValueError, yaml.YAMLError) as e:
        click.echo(f"Error: cannot read policy {policy_file}: {e}", err=True)
        sys.exit(1)
    if not isinstance(policy, dict):
        click.echo(f"Error: policy {policy_file} is not an object", err=True)
        sys.exit(1)

    try:
        state = registry.create_state(
            state_name,
            client=client,
            manifests_dir=manifests_dir or state_config.manifests_dir,
            namespace=namespace or state_config.namespace,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    catalog = InfoCatalog()
    catalog.add(
        InfoType.STATIC_CONFIG,
        StaticConfigProvider(
            cni_bin_directory=state_config.cni_bin_directory,
            cni_network_directory=state_config.cni_network_directory,
        ),
    )
    status, err = asyncio.run(state.sync(policy, catalog))
    if status == SyncStatus.ERROR:
        click.echo(f"Error: {err}", err=True)
        sys.exit(1)

    objects = client.objects
    if not objects:
        click.echo(f"State {state_name} renders no objects for this policy", err=True)
        return

    if output == "json":
        click.echo(json.dumps(objects, indent=2))
    elif output == "table":
        rows = [
            [
                obj["kind"],
                obj.get("metadata", {}).get("namespace", ""),
                obj.get("metadata", {}).get("name", ""),
                obj["apiVersion"],
            ]
            for obj in objects
        ]
        click.echo(
            tabulate(
                rows,
                headers=["Kind", "Namespace", "Name", "API Version"],
                tablefmt="grid",
            )
        )
    else:
        click.echo(
            yaml.safe_dump_all(objects, default_flow_style=False, sort_keys=False)
        )


@cli.command()
def states():
    """List the registered States"""
    registry = _load_registry()
    rows = []
    for name in registry.list_states():
        info = registry.get_state_info(name)
        rows.append([name, info["description"]])
    click.echo(tabulate(rows, headers=["Name", "Description"], tablefmt="grid"))


@cli.command()
@click.argument("name", required=False)
@click.option("--api-url", default=API_BASE_URL, help="Status API base URL")
def status(name, api_url):
    """Show the last reconciliation Results of policies"""
    client = NetworkOperatorCLI(api_url)

    if name:
        result = client._make_request("GET", f"/policies/{name}")
        policies = [result] if result else None
    else:
        policies = client._make_request("GET", "/policies")

    if policies is None:
        sys.exit(1)
    if not policies:
        click.echo("No policies reconciled yet")
        return

    for policy in policies:
        click.echo(f"Policy: {policy['name']}")
        click.echo(f"State: {policy['state']}")
        click.echo(f"Last Reconcile: {policy.get('last_reconciled', 'Never')}")
        rows = [
            [s["name"], s["state"], s.get("message") or ""]
            for s in policy.get("applied_states", [])
        ]
        click.echo(tabulate(rows, headers=["State", "Status", "Message"], tablefmt="grid"))
        click.echo("")


if __name__ == "__main__":
    cli()
