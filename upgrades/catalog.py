import typing
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from eth_typing import ChecksumAddress
from eth_utils import is_address, to_checksum_address

from upgrades.chain import ContractHandle
from upgrades.constants import CATALOG_FILEPATH, ENV_CONFIGS_DIR, SUPPORTED_APP_ENVS
from upgrades.params import VariableContext, resolve_values
from upgrades.proxy import ProxyDeployer
from upgrades.utils import ConfigurationError, _load_yaml, get_app_env, to_address


class EnvConfig(typing.NamedTuple):
    """Contract addresses and constants of one application environment."""

    env: str
    chain_id: int
    network: str
    addresses: Dict[str, ChecksumAddress]
    constants: Dict[str, Any]

    def get_address(self, field: str) -> ChecksumAddress:
        try:
            return self.addresses[field]
        except KeyError:
            raise ConfigurationError(f"'{field}' is not configured for environment '{self.env}'")


def load_env_config(env: Optional[str] = None, directory: Path = ENV_CONFIGS_DIR) -> EnvConfig:
    """Loads the config of `env`, or of the environment selected by NEXT_PUBLIC_APP_ENV."""
    env = env or get_app_env()
    if env not in SUPPORTED_APP_ENVS:
        raise ConfigurationError(f'Invalid ENV "{env}"')
    filepath = Path(directory) / f"{env}.yml"
    if not filepath.exists():
        raise ConfigurationError(f"No config found for environment '{env}' at {filepath}")

    config = _load_yaml(filepath) or dict()
    chain_id = config.get("chain_id")
    if chain_id is None:
        raise ConfigurationError(f"chain_id is not set in {filepath}.")

    addresses = dict()
    for field, address in (config.get("contracts") or {}).items():
        if not is_address(address):
            raise ConfigurationError(f"'{field}' in {filepath} is not a valid address: {address}")
        addresses[field] = to_checksum_address(address)

    return EnvConfig(
        env=env,
        chain_id=int(chain_id),
        network=config.get("network", ""),
        addresses=addresses,
        constants=config.get("constants") or dict(),
    )


class Requirement(typing.NamedTuple):
    """Another proxy that must already report `version` before this upgrade runs."""

    contract: str
    address_field: str
    version: int


class VersionUpgrade(typing.NamedTuple):
    """How to get a proxy to one catalogued version."""

    version: str
    description: str
    previous_contract: str
    contract: str
    args: List[Any]
    libraries: List[str]
    library_links: Dict[str, List[str]]
    requires: List[Requirement]

    @property
    def number(self) -> int:
        return version_number(self.version)


class UpgradeContract(typing.NamedTuple):
    label: str
    name: str
    config_address_field: str
    versions: Dict[str, VersionUpgrade]

    @property
    def version_labels(self) -> List[str]:
        return list(self.versions)

    def get_version(self, version: str) -> VersionUpgrade:
        try:
            return self.versions[version]
        except KeyError:
            raise ConfigurationError(
                f"Unknown version '{version}' for {self.label}; "
                f"available: {', '.join(self.versions)}"
            )


def version_number(version: str) -> int:
    """'v7' -> 7"""
    label = str(version).lower()
    if label.startswith("v"):
        label = label[1:]
    if not label.isdigit():
        raise ConfigurationError(f"Malformed version label '{version}'")
    return int(label)


def _parse_version(label: str, name: str, data: Dict) -> VersionUpgrade:
    for key in ("previous", "contract"):
        if key not in data:
            raise ConfigurationError(f"Version {label} of {name} is missing '{key}'")
    version_number(label)
    return VersionUpgrade(
        version=label,
        description=data.get("description", ""),
        previous_contract=data["previous"],
        contract=data["contract"],
        args=data.get("args") or [],
        libraries=data.get("libraries") or [],
        library_links=data.get("library_links") or {},
        requires=[
            Requirement(
                contract=r["contract"], address_field=r["address_field"], version=int(r["version"])
            )
            for r in data.get("requires") or []
        ],
    )


def load_catalog(filepath: Path = CATALOG_FILEPATH) -> Dict[str, UpgradeContract]:
    """Loads the catalogue of upgradeable contracts and their known versions."""
    config = _load_yaml(filepath) or dict()
    catalog = dict()
    for label, data in (config.get("contracts") or {}).items():
        for key in ("name", "config_address_field", "versions"):
            if key not in data:
                raise ConfigurationError(f"Catalog entry '{label}' is missing '{key}'")
        versions = {
            str(version): _parse_version(str(version), label, version_data)
            for version, version_data in data["versions"].items()
        }
        catalog[label] = UpgradeContract(
            label=label,
            name=data["name"],
            config_address_field=data["config_address_field"],
            versions=versions,
        )
    return catalog


def find_contract(catalog: Dict[str, UpgradeContract], name: str) -> Optional[UpgradeContract]:
    """Looks a catalog entry up by label or by its short name."""
    if name in catalog:
        return catalog[name]
    for entry in catalog.values():
        if entry.name == name:
            return entry
    return None


def check_requirements(
    version_upgrade: VersionUpgrade, env_config: EnvConfig, deployer: ProxyDeployer
) -> None:
    """Every required proxy must already report its minimum version."""
    for requirement in version_upgrade.requires:
        address = env_config.get_address(requirement.address_field)
        artifact = deployer.registry.get(requirement.contract)
        reported_version = ContractHandle(address, artifact, deployer.client).version()
        if reported_version < requirement.version:
            raise ConfigurationError(
                f"{requirement.contract} version is not {requirement.version}: "
                f"{reported_version}. Please upgrade {requirement.contract} first."
            )
        print(f"{requirement.contract} is at version: {reported_version}")


def resolve_upgrade_args(
    version_upgrade: VersionUpgrade, env_config: EnvConfig, deployer_address: str
) -> List[Any]:
    context = VariableContext(
        constants=env_config.constants,
        addresses=env_config.addresses,
        deployer_address=deployer_address,
    )
    return resolve_values(version_upgrade.args, context)


def upgrade_to_version(
    deployer: ProxyDeployer,
    entry: UpgradeContract,
    version: str,
    env_config: EnvConfig,
    skip_if_current: bool = False,
) -> Tuple[ContractHandle, Dict[str, ChecksumAddress]]:
    """
    Runs one catalogued upgrade: prerequisites, fresh libraries, then the proxy upgrade
    itself. Returns the upgraded proxy and the libraries deployed for it.
    """
    version_upgrade = entry.get_version(version)
    proxy_address = env_config.get_address(entry.config_address_field)
    args = resolve_upgrade_args(version_upgrade, env_config, to_address(deployer.signer))
    new_artifact = deployer.registry.get(version_upgrade.contract)

    deployer.check_upgrade(
        previous_contract_name=version_upgrade.previous_contract,
        new_contract_name=version_upgrade.contract,
        args=args,
        version=version_upgrade.number,
        library_names=version_upgrade.libraries,
        links=version_upgrade.library_links,
    )
    check_requirements(version_upgrade, env_config, deployer)

    previous = ContractHandle(
        proxy_address, deployer.registry.get(version_upgrade.previous_contract), deployer.client
    )
    if skip_if_current and previous.version() == version_upgrade.number:
        print(f"(i) {entry.label} is already at version {version}; skipping upgrade")
        return previous.at(new_artifact), dict()

    libraries = dict()
    if version_upgrade.libraries:
        print(f"Deploying {version_upgrade.contract} libraries...")
        libraries = deployer.deploy_libraries(
            version_upgrade.libraries, links=version_upgrade.library_links
        )

    print(f"Upgrading {entry.label} contract at address: {proxy_address}")
    upgraded = deployer.upgrade_proxy(
        previous_contract_name=version_upgrade.previous_contract,
        new_contract_name=version_upgrade.contract,
        proxy_address=proxy_address,
        args=args,
        version=version_upgrade.number,
        libraries={name: libraries[name] for name in new_artifact.required_libraries} or None,
    )
    return upgraded, libraries
