#!/usr/bin/python3

import sys

import click
from ape.cli import ConnectedProviderCommand, account_option

from upgrades.artifacts import ArtifactRegistry, ResolutionError, initializer_name
from upgrades.catalog import (
    find_contract,
    load_catalog,
    load_env_config,
    resolve_upgrade_args,
    upgrade_to_version,
)
from upgrades.chain import ApeChainClient
from upgrades.confirm import _confirm_resolution, _confirm_upgrade
from upgrades.constants import DEPLOYMENTS_DIR
from upgrades.options import (
    artifacts_option,
    autosign_option,
    contract_option,
    env_option,
    skip_if_current_option,
    version_option,
)
from upgrades.proxy import ImplementationMismatch, MissingUpgraderRole, ProxyDeployer, VersionMismatch
from upgrades.registry import RegistryEntry, save_libraries_to_file, update_registry_entry
from upgrades.utils import ConfigurationError, check_chain_id, registry_filepath_from_env


def _select(prompt: str, choices):
    for index, choice in enumerate(choices):
        click.secho(f"\t{index}. {choice}", fg="cyan")
    choice_index = click.prompt(prompt, type=click.IntRange(0, len(choices) - 1))
    return choices[choice_index]


@click.command(cls=ConnectedProviderCommand, name="upgrade-contract")
@account_option()
@env_option
@contract_option
@version_option
@skip_if_current_option
@autosign_option
@artifacts_option
def cli(account, env, contract, version, skip_if_current, autosign, artifacts):
    """
    Upgrades one catalogued proxy to a newer implementation version.

    NEXT_PUBLIC_APP_ENV=testnet ape run upgrade_contract --network vechain:testnet -c "X2EarnApps" -v v8
    """
    catalog = load_catalog()
    env_config = load_env_config(env)

    if contract is None:
        contract = _select("Which contract do you want to upgrade?", list(catalog))
    entry = find_contract(catalog, contract)
    if entry is None:
        raise click.BadParameter(f"Unknown contract '{contract}'", param_hint="--contract")
    if version is None:
        version = _select(f"Which {entry.label} version?", entry.version_labels)
    version_upgrade = entry.get_version(version)

    client = ApeChainClient()
    check_chain_id(env, env_config.chain_id, client.chain_id)

    click.secho(f"\nUpgrading {entry.label} to {version} on {env}", fg="green")
    click.secho(f"\t{version_upgrade.description}", fg="yellow")
    click.secho(f"\t{version_upgrade.previous_contract} -> {version_upgrade.contract}", fg="yellow")
    args = resolve_upgrade_args(version_upgrade, env_config, account.address)
    if not autosign:
        initializer = initializer_name(version_upgrade.number)
        _confirm_resolution(args, initializer, version_upgrade.contract)
        _confirm_upgrade(entry.label, version, env)
    account.set_autosign(autosign)

    registry = (
        ArtifactRegistry.from_artifacts_dir(artifacts)
        if artifacts
        else ArtifactRegistry.from_ape_project()
    )
    deployer = ProxyDeployer(registry=registry, client=client, signer=account, log_output=True)

    try:
        upgraded, libraries = upgrade_to_version(
            deployer=deployer,
            entry=entry,
            version=version,
            env_config=env_config,
            skip_if_current=skip_if_current,
        )
    except (
        ConfigurationError,
        ResolutionError,
        ImplementationMismatch,
        VersionMismatch,
        MissingUpgraderRole,
    ) as e:
        click.secho(f"Error upgrading {entry.label}: {e}", fg="red")
        sys.exit(1)

    output_dir = DEPLOYMENTS_DIR / env / entry.name
    if libraries:
        save_libraries_to_file({version_upgrade.contract: libraries}, output_dir)

    registry_filepath = update_registry_entry(
        RegistryEntry(
            chain_id=client.chain_id,
            name=entry.name,
            contract_type=upgraded.name,
            proxy=upgraded.address,
            implementation=upgraded.implementation(),
            version=version_upgrade.number,
            deployer=account.address,
            libraries=libraries or None,
        ),
        filepath=registry_filepath_from_env(env),
    )
    print(f"(i) Registry written to {registry_filepath}!")
    click.secho(f"{entry.label} upgraded to {version} successfully.", fg="green")


if __name__ == "__main__":
    cli()
