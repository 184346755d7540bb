import click

from upgrades.constants import APP_ENV_VAR, SUPPORTED_APP_ENVS
from upgrades.types import ChecksumAddress, VersionLabel

env_option = click.option(
    "--env",
    "-e",
    help=f"Application environment (defaults to ${APP_ENV_VAR}).",
    type=click.Choice(SUPPORTED_APP_ENVS),
    envvar=APP_ENV_VAR,
    required=True,
)

contract_option = click.option(
    "--contract",
    "-c",
    help="Label of the contract to upgrade, as listed in the catalog.",
    type=str,
    required=False,
)

version_option = click.option(
    "--version",
    "-v",
    "version",
    help="Version to upgrade to (e.g. v6).",
    type=VersionLabel(),
    required=False,
)

proxy_option = click.option(
    "--proxy",
    "-p",
    help="Proxy address.",
    type=ChecksumAddress(),
    required=False,
)

autosign_option = click.option(
    "--autosign",
    help="Sign transactions and skip confirmations automatically.",
    is_flag=True,
    default=False,
)

skip_if_current_option = click.option(
    "--skip-if-current",
    help="Do nothing if the proxy already reports the target version.",
    is_flag=True,
    default=False,
)

artifacts_option = click.option(
    "--artifacts",
    help="Directory of hardhat artifacts; defaults to the contracts compiled by ape.",
    type=click.Path(exists=True, file_okay=False),
    required=False,
)
