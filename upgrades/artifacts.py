import typing
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_typing import ChecksumAddress
from eth_utils import keccak, remove_0x_prefix, to_checksum_address
from ethpm_types import ContractType, MethodABI
from hexbytes import HexBytes
from web3.auto import w3

from upgrades.constants import INITIALIZER_NAME, VERSIONED_INITIALIZER_TEMPLATE
from upgrades.utils import ConfigurationError, _load_json

LibraryMap = Dict[str, ChecksumAddress]

# library name -> [(byte offset, length), ...]
LinkReferences = Dict[str, List[Tuple[int, int]]]


class ResolutionError(ValueError):
    """Raised when a contract, a method, or its arguments cannot be resolved from an ABI."""


class ArtifactNotFound(ResolutionError):
    pass


class MethodNotFound(ResolutionError):
    def __init__(self, contract_name: str, method_name: str, message: Optional[str] = None):
        self.contract_name = contract_name
        self.method_name = method_name
        super().__init__(message or f"Method '{method_name}' not found in {contract_name} ABI")


class InitializerNotFound(MethodNotFound):
    def __init__(self, contract_name: str, selector: str):
        super().__init__(
            contract_name,
            selector,
            f"Contract initializer '{selector}' not found in {contract_name} ABI",
        )

    @property
    def selector(self) -> str:
        return self.method_name


class ArgumentMismatch(ResolutionError):
    pass


class LinkError(ConfigurationError):
    pass


def _normalize_arg(value: Any) -> Any:
    """Accounts, contract handles and other address holders are passed by address."""
    if isinstance(value, (list, tuple)):
        return type(value)(_normalize_arg(v) for v in value)
    address = getattr(value, "address", None)
    if isinstance(address, str):
        return address
    return value


def _abi_types(abi_inputs) -> List[str]:
    return [abi_input.canonical_type for abi_input in abi_inputs]


def _is_encodable(abi_inputs, args: Sequence[Any]) -> bool:
    return all(
        w3.is_encodable(abi_input.canonical_type, arg) for arg, abi_input in zip(args, abi_inputs)
    )


class ContractArtifact:
    """
    Compiled contract: ABI plus (possibly unlinked) creation bytecode.
    """

    def __init__(
        self,
        name: str,
        contract_type: ContractType,
        bytecode: str,
        link_references: Optional[LinkReferences] = None,
    ):
        self.name = name
        self.contract_type = contract_type
        self.bytecode = remove_0x_prefix(bytecode or "")
        self.link_references = link_references or dict()

    def __repr__(self) -> str:
        return f"<ContractArtifact {self.name}>"

    @classmethod
    def from_abi(
        cls,
        name: str,
        abi: List[Dict],
        bytecode: str = "",
        link_references: Optional[LinkReferences] = None,
    ) -> "ContractArtifact":
        contract_type = ContractType.model_validate({"contractName": name, "abi": abi})
        return cls(
            name=name,
            contract_type=contract_type,
            bytecode=bytecode,
            link_references=link_references,
        )

    @classmethod
    def from_hardhat_artifact(cls, data: Dict) -> "ContractArtifact":
        link_references = dict()
        for source_libraries in data.get("linkReferences", {}).values():
            for library_name, positions in source_libraries.items():
                offsets = link_references.setdefault(library_name, [])
                offsets.extend((p["start"], p["length"]) for p in positions)
        return cls.from_abi(
            name=data["contractName"],
            abi=data["abi"],
            bytecode=data.get("bytecode", ""),
            link_references=link_references,
        )

    @classmethod
    def from_contract_type(cls, contract_type: ContractType) -> "ContractArtifact":
        link_references = dict()
        bytecode = ""
        deployment_bytecode = contract_type.deployment_bytecode
        if deployment_bytecode is not None:
            bytecode = deployment_bytecode.bytecode or ""
            for reference in deployment_bytecode.link_references or []:
                library_name = reference.name.split(":")[-1]
                offsets = link_references.setdefault(library_name, [])
                offsets.extend((offset, reference.length) for offset in reference.offsets)
        return cls(
            name=contract_type.name,
            contract_type=contract_type,
            bytecode=bytecode,
            link_references=link_references,
        )

    #
    # ABI
    #

    @property
    def required_libraries(self) -> List[str]:
        return sorted(self.link_references)

    def has_method(self, method_name: str) -> bool:
        return bool(self.get_methods(method_name))

    def get_methods(self, method_name: str) -> List[MethodABI]:
        return [abi for abi in self.contract_type.methods if abi.name == method_name]

    def find_method(self, method_name: str, args: Sequence[Any] = ()) -> MethodABI:
        """Returns the (possibly overloaded) method ABI matching the given arguments."""
        method_abis = self.get_methods(method_name)
        if not method_abis:
            raise MethodNotFound(self.name, method_name)

        args = _normalize_arg(list(args))
        for abi in method_abis:
            if len(abi.inputs) == len(args) and _is_encodable(abi.inputs, args):
                return abi
        raise ArgumentMismatch(
            f"Could not find ABI for '{self.name}.{method_name}' with {len(args)} arg(s) "
            f"and given type(s)"
        )

    def encode_input(self, method_name: str, *args) -> HexBytes:
        abi = self.find_method(method_name, args)
        return encode_method_call(abi, args)

    def decode_output(self, method_name: str, data: bytes, args: Sequence[Any] = ()) -> Any:
        abi = self.find_method(method_name, args)
        result = decode(_abi_types(abi.outputs), HexBytes(data))
        if len(result) == 1:
            return result[0]
        return result

    def encode_constructor(self, *args) -> HexBytes:
        constructor = self.contract_type.constructor
        abi_inputs = constructor.inputs if constructor else []
        args = _normalize_arg(list(args))
        if len(args) != len(abi_inputs) or not _is_encodable(abi_inputs, args):
            raise ArgumentMismatch(
                f"{self.name} constructor requires {len(abi_inputs)} arg(s) "
                f"({', '.join(_abi_types(abi_inputs))}), got {len(args)}"
            )
        if not abi_inputs:
            return HexBytes(b"")
        return HexBytes(encode(_abi_types(abi_inputs), args))

    #
    # Bytecode
    #

    def check_links(self, libraries: Optional[LibraryMap] = None) -> None:
        """The given libraries must be exactly the ones the bytecode links."""
        libraries = libraries or dict()
        unknown = set(libraries) - set(self.link_references)
        if unknown:
            raise LinkError(
                f"{self.name} does not need to link library(ies): {', '.join(sorted(unknown))}"
            )
        missing = set(self.link_references) - set(libraries)
        if missing:
            raise LinkError(
                f"{self.name} is missing links for the following libraries: "
                f"{', '.join(sorted(missing))}"
            )

    def link(self, libraries: Optional[LibraryMap] = None) -> HexBytes:
        """Returns the creation bytecode with every library placeholder replaced."""
        self.check_links(libraries)
        libraries = libraries or dict()
        bytecode = self.bytecode
        for library_name, positions in self.link_references.items():
            address = remove_0x_prefix(to_checksum_address(libraries[library_name])).lower()
            for start, length in positions:
                if length != 20:
                    raise LinkError(f"Unexpected link reference length {length} for {library_name}")
                begin, end = start * 2, (start + length) * 2
                bytecode = bytecode[:begin] + address + bytecode[end:]

        if "_" in bytecode:
            raise LinkError(f"{self.name} bytecode still contains unlinked placeholders")
        if not bytecode:
            raise ResolutionError(f"{self.name} has no creation bytecode (abstract or interface?)")
        return HexBytes(bytecode)

    def creation_code(
        self, constructor_args: Sequence[Any] = (), libraries: Optional[LibraryMap] = None
    ) -> HexBytes:
        return HexBytes(self.link(libraries) + self.encode_constructor(*constructor_args))


def method_selector(abi: MethodABI) -> HexBytes:
    return HexBytes(keccak(text=abi.selector)[:4])


def encode_method_call(abi: MethodABI, args: Sequence[Any]) -> HexBytes:
    args = _normalize_arg(list(args))
    encoded_args = encode(_abi_types(abi.inputs), args)
    return HexBytes(method_selector(abi) + encoded_args)


def initializer_name(version: Optional[int] = None) -> str:
    if version:
        return VERSIONED_INITIALIZER_TEMPLATE.format(version=version)
    return INITIALIZER_NAME


def get_initializer_data(
    artifact: ContractArtifact, args: Sequence[Any], version: Optional[int] = None
) -> HexBytes:
    """
    Encodes a call to `initializeV{version}` (or `initialize` when no version
    is given) against the artifact's ABI.
    """
    selector = initializer_name(version)
    if not artifact.has_method(selector):
        raise InitializerNotFound(artifact.name, selector)
    return artifact.encode_input(selector, *args)


class ArtifactRegistry:
    """Explicit name -> contract artifact table handed to the orchestrator."""

    def __init__(self, artifacts: typing.Iterable[ContractArtifact] = ()):
        self._artifacts: Dict[str, ContractArtifact] = dict()
        for artifact in artifacts:
            self.add(artifact)

    def __contains__(self, name: str) -> bool:
        return name in self._artifacts

    def __len__(self) -> int:
        return len(self._artifacts)

    def __iter__(self):
        return iter(self._artifacts.values())

    def add(self, artifact: ContractArtifact) -> None:
        if artifact.name in self._artifacts:
            raise ValueError(f"Ambiguous artifact name '{artifact.name}'")
        self._artifacts[artifact.name] = artifact

    def get(self, name: str) -> ContractArtifact:
        try:
            return self._artifacts[name]
        except KeyError:
            raise ArtifactNotFound(f"No contract artifact found with name '{name}'.")

    @property
    def names(self) -> List[str]:
        return sorted(self._artifacts)

    @classmethod
    def from_artifacts_dir(cls, directory: Path) -> "ArtifactRegistry":
        """Loads every hardhat-style artifact under `directory`."""
        directory = Path(directory)
        if not directory.exists():
            raise FileNotFoundError(f"Artifacts directory not found at {directory}")

        artifacts = list()
        for filepath in sorted(directory.rglob("*.json")):
            if filepath.name.endswith(".dbg.json"):
                continue
            data = _load_json(filepath)
            if not isinstance(data, dict) or "contractName" not in data or "abi" not in data:
                continue  # build-info and friends
            artifacts.append(ContractArtifact.from_hardhat_artifact(data))
        return cls(artifacts)

    @classmethod
    def from_contract_types(cls, contract_types: typing.Iterable[ContractType]) -> "ArtifactRegistry":
        return cls(ContractArtifact.from_contract_type(ct) for ct in contract_types)

    @classmethod
    def from_ape_project(cls, project=None) -> "ArtifactRegistry":
        """Builds the registry from the contracts compiled by an ape project."""
        if project is None:
            from ape import project
        return cls.from_contract_types(project.contracts.values())
