import itertools
from collections import defaultdict

import pytest
from eth_abi import decode, encode
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from upgrades.artifacts import ArtifactRegistry, ContractArtifact, method_selector
from upgrades.chain import ChainClient
from upgrades.constants import EIP1967_IMPLEMENTATION_SLOT, PROXY_CONTRACT_NAME
from upgrades.proxy import ProxyDeployer

# Common constants
LIBRARY_PLACEHOLDER = "__$c3d4e5f6a7b8c9d0e1f2a3b4c5d6e7f8a9$__"
RUNTIME_TAIL = "6080604052"


def _function(name, inputs=(), outputs=(), mutability="nonpayable"):
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": f"arg{i}", "type": t} for i, t in enumerate(inputs)],
        "outputs": [{"name": "", "type": t} for t in outputs],
    }


UPGRADE_TO_AND_CALL = _function("upgradeToAndCall", ["address", "bytes"], mutability="payable")
VERSION = _function("version", outputs=["string"], mutability="view")
HAS_ROLE = _function("hasRole", ["bytes32", "address"], ["bool"], mutability="view")
UUPS = [UPGRADE_TO_AND_CALL, VERSION, HAS_ROLE]

PROXY_ABI = [
    {
        "type": "constructor",
        "stateMutability": "payable",
        "inputs": [
            {"name": "implementation", "type": "address"},
            {"name": "_data", "type": "bytes"},
        ],
    }
]

# name -> (bytecode tag, abi, reported version)
CONTRACTS = {
    PROXY_CONTRACT_NAME: ("b3000000", PROXY_ABI, None),
    "WidgetV1": ("a1000001", [_function("initialize"), *UUPS], "1"),
    "WidgetV2": ("a1000002", [_function("initializeV2", ["uint256"]), *UUPS], "2"),
    "WidgetV3": ("a1000003", [_function("initializeV3"), *UUPS], "3"),
    "Widget": (
        "a1000004",
        [
            _function("initialize"),
            _function("initializeV2", ["uint256"]),
            _function("initializeV4", ["address"]),
            *UUPS,
        ],
        "4",
    ),
    "Gadget": (
        "a2000001",
        [
            _function("initialize", ["address", "uint256"]),
            _function("initialize", ["address"]),
            UPGRADE_TO_AND_CALL,
        ],
        None,
    ),
    "GadgetV2": ("a2000002", [_function("initialize", ["address", "uint256"])], None),
    "WidgetUtils": ("c1000001", [], None),
    "WidgetMath": ("c1000002", [], None),
}

LINKED_CONTRACT = "WidgetLinked"
LINKED_TAG = "a1000005"

DEFAULT_VERSIONS = {name: version for name, (_, _, version) in CONTRACTS.items() if version}
DEFAULT_VERSIONS[LINKED_CONTRACT] = "2"


class FakeAccount:
    def __init__(self, address):
        self.address = address

    def __repr__(self):
        return f"<FakeAccount {self.address}>"


class FakeRevert(Exception):
    pass


class FakeChain(ChainClient):
    """
    In-memory chain that understands just enough of the proxy contracts:
    the proxy constructor, upgradeToAndCall, version() and hasRole().
    """

    Revert = FakeRevert

    def __init__(self, registry: ArtifactRegistry, versions=None):
        self.registry = registry
        self.versions = dict(versions or {})
        self.code = dict()  # address -> artifact
        self.storage = defaultdict(dict)
        self.deployments = list()
        self.transactions = list()
        self.calls = list()
        self.storage_reads = list()
        self.initializer_calls = list()  # (proxy address, method name, args)
        self.version_reads = list()
        self.unauthorized = set()
        self.misconfigured = False
        self._addresses = itertools.count(0x1000)

    def _next_address(self):
        return to_checksum_address(f"0x{next(self._addresses):040x}")

    def _artifact_from_code(self, creation_code):
        for artifact in self.registry:
            if artifact.bytecode and bytes(creation_code[:4]) == bytes.fromhex(
                artifact.bytecode[:8]
            ):
                return artifact
        raise FakeRevert("unknown bytecode")

    def _implementation_of(self, address):
        value = self.storage[address].get(EIP1967_IMPLEMENTATION_SLOT)
        if value is None:
            return self.code[address]
        return self.code[to_checksum_address(value[-20:])]

    def _set_implementation(self, proxy, implementation):
        if self.misconfigured:
            # a copy of the same code at an address nobody asked for
            bogus = self._next_address()
            self.code[bogus] = self.code[implementation]
            implementation = bogus
        self.storage[proxy][EIP1967_IMPLEMENTATION_SLOT] = HexBytes(
            bytes(12) + HexBytes(implementation)
        )

    @staticmethod
    def _decode_call(artifact, data):
        data = HexBytes(data)
        for abi in artifact.contract_type.methods:
            if method_selector(abi) == data[:4]:
                types = [i.canonical_type for i in abi.inputs]
                return abi, [
                    to_checksum_address(value) if abi_type == "address" else value
                    for abi_type, value in zip(types, decode(types, data[4:]))
                ]
        raise FakeRevert(f"{artifact.name}: unknown selector {data[:4].hex()}")

    def _delegate(self, proxy, data, signer):
        abi, args = self._decode_call(self._implementation_of(proxy), data)
        if abi.name == "upgradeToAndCall":
            if signer.address in self.unauthorized:
                raise FakeRevert("AccessControlUnauthorizedAccount")
            new_implementation, init_data = args
            self._set_implementation(proxy, to_checksum_address(new_implementation))
            if init_data:
                self._delegate(proxy, init_data, signer)
        else:
            self.initializer_calls.append((proxy, abi.name, args))

    #
    # ChainClient
    #

    def deploy(self, signer, creation_code):
        creation_code = HexBytes(creation_code)
        artifact = self._artifact_from_code(creation_code)
        address = self._next_address()
        self.code[address] = artifact
        self.deployments.append((signer, artifact.name, address, creation_code))
        if artifact.name == PROXY_CONTRACT_NAME:
            constructor_args = creation_code[len(artifact.bytecode) // 2 :]
            implementation, data = decode(["address", "bytes"], constructor_args)
            self._set_implementation(address, to_checksum_address(implementation))
            if data:
                self._delegate(address, data, signer)
        return address

    def transact(self, signer, to, data):
        self.transactions.append((signer, to, HexBytes(data)))
        self._delegate(to, data, signer)
        return {"to": to, "status": 1}

    def call(self, to, data):
        self.calls.append((to, HexBytes(data)))
        artifact = self._implementation_of(to)
        abi, args = self._decode_call(artifact, data)
        if abi.name == "version":
            version = self.versions.get(artifact.name, DEFAULT_VERSIONS.get(artifact.name))
            self.version_reads.append(version)
            return HexBytes(encode(["string"], [version]))
        if abi.name == "hasRole":
            return HexBytes(encode(["bool"], [args[1] not in self.unauthorized]))
        raise FakeRevert(f"{abi.name} is not supported")

    def get_storage(self, address, slot):
        self.storage_reads.append((address, slot))
        return self.storage[address].get(slot, HexBytes(bytes(32)))

    @property
    def state_changes(self):
        return len(self.deployments) + len(self.transactions)


# Utility functions
def decoded_initializers(chain):
    return [(name, args) for _, name, args in chain.initializer_calls]


def make_artifact(name):
    tag, abi, _ = CONTRACTS[name]
    return ContractArtifact.from_abi(name=name, abi=abi, bytecode=f"0x{tag}{RUNTIME_TAIL}")


def make_linked_artifact():
    bytecode = f"0x{LINKED_TAG}{LIBRARY_PLACEHOLDER}{RUNTIME_TAIL}"
    return ContractArtifact.from_abi(
        name=LINKED_CONTRACT,
        abi=[_function("initialize"), _function("initializeV2"), *UUPS],
        bytecode=bytecode,
        link_references={"WidgetUtils": [(4, 20)]},
    )


# Fixtures
@pytest.fixture
def artifacts():
    return ArtifactRegistry([make_artifact(name) for name in CONTRACTS] + [make_linked_artifact()])


@pytest.fixture
def chain(artifacts):
    return FakeChain(artifacts)


@pytest.fixture
def signer():
    return FakeAccount(to_checksum_address("0x" + "de" * 20))


@pytest.fixture
def stranger():
    return FakeAccount(to_checksum_address("0x" + "bb" * 20))


@pytest.fixture
def deployer(artifacts, chain, signer):
    return ProxyDeployer(registry=artifacts, client=chain, signer=signer)
