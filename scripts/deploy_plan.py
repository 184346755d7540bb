#!/usr/bin/python3

from pathlib import Path

import click
from ape.cli import ConnectedProviderCommand, account_option

from upgrades.artifacts import ArtifactRegistry
from upgrades.catalog import load_env_config
from upgrades.chain import ApeChainClient
from upgrades.confirm import _continue
from upgrades.constants import PLANS_DIR
from upgrades.options import artifacts_option, autosign_option, env_option
from upgrades.params import UpgradePlan
from upgrades.proxy import ProxyDeployer
from upgrades.registry import entry_from_handle, write_registry
from upgrades.utils import check_chain_id, registry_filepath_from_env


@click.command(cls=ConnectedProviderCommand, name="deploy-plan")
@account_option()
@env_option
@click.option(
    "--plan",
    "-p",
    help="Upgrade plan name (file in upgrades/plans) or path.",
    type=str,
    required=True,
)
@autosign_option
@artifacts_option
def cli(account, env, plan, autosign, artifacts):
    """
    Deploys a proxy and walks it through every version of an upgrade plan.

    NEXT_PUBLIC_APP_ENV=local ape run deploy_plan --network vechain:solo -p galaxy-member-local
    """
    plan_filepath = PLANS_DIR / f"{plan}.yml"
    if not plan_filepath.exists():
        plan_filepath = Path(plan)

    env_config = load_env_config(env)
    client = ApeChainClient()
    check_chain_id(env, env_config.chain_id, client.chain_id)

    upgrade_plan = UpgradePlan.from_yaml(
        plan_filepath,
        addresses=env_config.addresses,
        deployer_address=account.address,
    )
    if upgrade_plan.chain_id is not None:
        check_chain_id(upgrade_plan.name, upgrade_plan.chain_id, client.chain_id)

    registry = (
        ArtifactRegistry.from_artifacts_dir(artifacts)
        if artifacts
        else ArtifactRegistry.from_ape_project()
    )
    upgrade_plan.validate(registry)

    print(upgrade_plan.describe())
    if not autosign:
        _continue()
    account.set_autosign(autosign)

    deployer = ProxyDeployer(registry=registry, client=client, signer=account, log_output=True)
    proxy = upgrade_plan.execute(deployer)

    last_step = upgrade_plan.steps[-1]
    entry = entry_from_handle(
        proxy,
        chain_id=client.chain_id,
        deployer=account.address,
        name=upgrade_plan.name,
        version=last_step.version,
        libraries=upgrade_plan.libraries[-1],
    )
    output_filepath = write_registry(entries=[entry], filepath=registry_filepath_from_env(env))
    print(f"(i) Registry written to {output_filepath}!")


if __name__ == "__main__":
    cli()
