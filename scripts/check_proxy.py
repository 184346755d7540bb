#!/usr/bin/python3

import click
from ape.cli import ConnectedProviderCommand

from upgrades.artifacts import ArtifactRegistry
from upgrades.catalog import find_contract, load_catalog, load_env_config
from upgrades.chain import ApeChainClient, ContractHandle
from upgrades.constants import VERSION_METHOD_NAME
from upgrades.options import artifacts_option, contract_option, env_option, proxy_option


def _display_proxy(label: str, proxy: ContractHandle) -> None:
    click.secho(f"    {label} {proxy.address}", fg="cyan")
    click.secho(f"        implementation: {proxy.implementation()}")
    if proxy.artifact.has_method(VERSION_METHOD_NAME):
        click.secho(f"        version: {proxy.version()}")


@click.command(cls=ConnectedProviderCommand, name="check-proxy")
@env_option
@contract_option
@proxy_option
@artifacts_option
def cli(env, contract, proxy, artifacts):
    """
    Prints implementation address and version of catalogued proxies,
    or of a single proxy when --proxy is given.
    """
    catalog = load_catalog()
    env_config = load_env_config(env)
    client = ApeChainClient()
    registry = (
        ArtifactRegistry.from_artifacts_dir(artifacts)
        if artifacts
        else ArtifactRegistry.from_ape_project()
    )

    entries = list(catalog.values())
    if contract:
        entry = find_contract(catalog, contract)
        if entry is None:
            raise click.BadParameter(f"Unknown contract '{contract}'", param_hint="--contract")
        entries = [entry]
    elif proxy:
        raise click.UsageError("--proxy requires --contract")

    click.secho(f"\n{env} (chain id {client.chain_id})", fg="green")
    for entry in entries:
        address = proxy or env_config.addresses.get(entry.config_address_field)
        if address is None:
            click.secho(f"    {entry.label}: not deployed", fg="yellow")
            continue
        latest = entry.get_version(entry.version_labels[-1])
        _display_proxy(entry.label, ContractHandle(address, registry.get(latest.contract), client))


if __name__ == "__main__":
    cli()
