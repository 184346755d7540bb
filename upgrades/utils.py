import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from eth_typing import ChecksumAddress
from eth_utils import is_address, to_checksum_address

from upgrades.constants import APP_ENV_VAR, DEPLOYMENTS_DIR, SUPPORTED_APP_ENVS


class ConfigurationError(ValueError):
    """Raised when a call or a config file is malformed; nothing has touched the chain yet."""


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def _load_json(filepath: Path) -> Any:
    """Loads a JSON file."""
    with open(filepath, "r") as file:
        return json.load(file)


def compare_addresses(address_1: Optional[str], address_2: Optional[str]) -> bool:
    """Case-insensitive address comparison."""
    if not address_1 or not address_2:
        return False
    return address_1.lower() == address_2.lower()


def to_address(value: Any) -> ChecksumAddress:
    """Returns the checksum address of an address-like value (str, account, contract)."""
    address = getattr(value, "address", value)
    if not isinstance(address, str) or not is_address(address):
        raise ValueError(f"'{value}' is not a valid address")
    return to_checksum_address(address)


def get_app_env(environ: Optional[Dict[str, str]] = None) -> str:
    """Returns the application environment selected through the environment variables."""
    environ = os.environ if environ is None else environ
    env = environ.get(APP_ENV_VAR)
    if not env:
        raise ConfigurationError(f"Environment variable {APP_ENV_VAR} is not set.")
    if env not in SUPPORTED_APP_ENVS:
        raise ConfigurationError(
            f"Invalid {APP_ENV_VAR} '{env}'; expected one of {', '.join(SUPPORTED_APP_ENVS)}"
        )
    return env


def check_same_length(name: str, expected: int, values: Optional[List[Any]]) -> None:
    if values is not None and len(values) != expected:
        raise ConfigurationError(
            f"Contract names and {name} must have the same length "
            f"(expected {expected}, got {len(values)})"
        )


def registry_filepath_from_env(env: str, directory: Path = DEPLOYMENTS_DIR) -> Path:
    return Path(directory) / f"{env}-registry.json"


def check_chain_id(env: str, expected_chain_id: int, chain_id: int) -> None:
    """The connected network must be the one the environment is configured for."""
    if int(expected_chain_id) != int(chain_id):
        raise ConfigurationError(
            f"Environment '{env}' is configured for chain id {expected_chain_id}, "
            f"but connected to chain id {chain_id}"
        )
