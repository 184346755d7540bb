from pathlib import Path

from eth_utils import keccak

#
# Filesystem
#

UPGRADES_DIR = Path(__file__).parent
ENV_CONFIGS_DIR = UPGRADES_DIR / "envs"
PLANS_DIR = UPGRADES_DIR / "plans"
CATALOG_FILEPATH = UPGRADES_DIR / "catalog.yml"
DEPLOYMENTS_DIR = UPGRADES_DIR / "deployments"
LIBRARIES_FILENAME = "libraries.json"

#
# Environments
#

APP_ENV_VAR = "NEXT_PUBLIC_APP_ENV"

LOCAL = "local"
E2E = "e2e"
TESTNET_STAGING = "testnet-staging"
TESTNET = "testnet"
MAINNET = "mainnet"

SUPPORTED_APP_ENVS = [LOCAL, E2E, TESTNET_STAGING, TESTNET, MAINNET]

#
# Contracts
#

PROXY_CONTRACT_NAME = "B3TRProxy"

INITIALIZER_NAME = "initialize"
VERSIONED_INITIALIZER_TEMPLATE = "initializeV{version}"
UPGRADE_METHOD_NAME = "upgradeToAndCall"
VERSION_METHOD_NAME = "version"
HAS_ROLE_METHOD_NAME = "hasRole"

# EIP1967 Implementation slot - https://eips.ethereum.org/EIPS/eip-1967#logic-contract-address
EIP1967_IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC

UPGRADER_ROLE = keccak(text="UPGRADER_ROLE")
