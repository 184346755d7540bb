from abc import ABC, abstractmethod
from typing import Any

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from upgrades.artifacts import ContractArtifact
from upgrades.constants import EIP1967_IMPLEMENTATION_SLOT, VERSION_METHOD_NAME


class ChainClient(ABC):
    """
    The handful of chain operations the upgrade orchestration sequences.
    Every state-changing operation blocks until it is confirmed.
    """

    @abstractmethod
    def deploy(self, signer: Any, creation_code: bytes) -> ChecksumAddress:
        """Creates a contract and returns its address once the deployment is mined."""
        raise NotImplementedError

    @abstractmethod
    def transact(self, signer: Any, to: ChecksumAddress, data: bytes) -> Any:
        """Sends a transaction and returns its receipt once mined."""
        raise NotImplementedError

    @abstractmethod
    def call(self, to: ChecksumAddress, data: bytes) -> bytes:
        """Read-only call."""
        raise NotImplementedError

    @abstractmethod
    def get_storage(self, address: ChecksumAddress, slot: int) -> bytes:
        raise NotImplementedError


class ApeChainClient(ChainClient):
    """
    ChainClient backed by an ape provider; signers are ape accounts.
    Reverts surface as ape's own exceptions.
    """

    def __init__(self, provider=None):
        if provider is None:
            from ape import networks

            provider = networks.provider
        self.provider = provider

    @property
    def chain_id(self) -> int:
        return self.provider.chain_id

    def _create_transaction(self, **kwargs):
        ecosystem = self.provider.network.ecosystem
        return ecosystem.create_transaction(chain_id=self.chain_id, **kwargs)

    def deploy(self, signer, creation_code: bytes) -> ChecksumAddress:
        txn = self._create_transaction(data=HexBytes(creation_code))
        receipt = signer.call(txn)
        if not receipt.contract_address:
            raise RuntimeError(f"No contract address in deployment receipt {receipt.txn_hash}")
        return to_checksum_address(receipt.contract_address)

    def transact(self, signer, to: ChecksumAddress, data: bytes):
        txn = self._create_transaction(receiver=to, data=HexBytes(data))
        return signer.call(txn)

    def call(self, to: ChecksumAddress, data: bytes) -> bytes:
        txn = self._create_transaction(receiver=to, data=HexBytes(data))
        return HexBytes(self.provider.send_call(txn))

    def get_storage(self, address: ChecksumAddress, slot: int) -> bytes:
        return HexBytes(self.provider.get_storage(address, slot))


def get_implementation_address(client: ChainClient, proxy_address: ChecksumAddress) -> ChecksumAddress:
    """Reads the implementation address stored in the proxy's EIP1967 slot."""
    slot_value = HexBytes(client.get_storage(proxy_address, EIP1967_IMPLEMENTATION_SLOT))
    return to_checksum_address(slot_value[-20:].rjust(20, b"\x00"))


class ContractHandle:
    """An address on chain viewed through a contract ABI."""

    def __init__(self, address: ChecksumAddress, artifact: ContractArtifact, client: ChainClient):
        self.address = to_checksum_address(address)
        self.artifact = artifact
        self.client = client

    def __repr__(self) -> str:
        return f"<{self.artifact.name} {self.address}>"

    @property
    def name(self) -> str:
        return self.artifact.name

    def at(self, artifact: ContractArtifact) -> "ContractHandle":
        """Same address, different interface."""
        return ContractHandle(address=self.address, artifact=artifact, client=self.client)

    def encode_input(self, method_name: str, *args) -> HexBytes:
        return self.artifact.encode_input(method_name, *args)

    def call(self, method_name: str, *args) -> Any:
        data = self.encode_input(method_name, *args)
        result = self.client.call(self.address, data)
        return self.artifact.decode_output(method_name, result, args)

    def transact(self, signer, method_name: str, *args) -> Any:
        data = self.encode_input(method_name, *args)
        return self.client.transact(signer, self.address, data)

    def version(self) -> int:
        # version() returns a string ("5") on most contracts and an integer on a few
        return int(self.call(VERSION_METHOD_NAME))

    def implementation(self) -> ChecksumAddress:
        return get_implementation_address(self.client, self.address)
