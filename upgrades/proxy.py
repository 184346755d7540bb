import typing
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_typing import ChecksumAddress
from hexbytes import HexBytes

from upgrades.artifacts import (
    ArtifactRegistry,
    ContractArtifact,
    InitializerNotFound,
    LibraryMap,
    LinkError,
    MethodNotFound,
    get_initializer_data,
    initializer_name,
)
from upgrades.chain import ChainClient, ContractHandle, get_implementation_address
from upgrades.constants import (
    HAS_ROLE_METHOD_NAME,
    PROXY_CONTRACT_NAME,
    UPGRADE_METHOD_NAME,
    UPGRADER_ROLE,
    VERSION_METHOD_NAME,
)
from upgrades.utils import ConfigurationError, check_same_length, compare_addresses, to_address

EMPTY_DATA = HexBytes(b"")


class ImplementationMismatch(RuntimeError):
    """Raised when a proxy does not point at the implementation that was just deployed."""


class VersionMismatch(RuntimeError):
    """Raised when an upgraded contract does not report the expected version."""


class MissingUpgraderRole(PermissionError):
    pass


class InitializerCall(typing.NamedTuple):
    """A named initializer call, e.g. ("initializeV2", [42])."""

    name: str
    args: Sequence[Any] = ()


class ProxyDeployer:
    """
    Deploys versioned implementations behind UUPS proxies and upgrades them.

    The signer, the chain client and the artifact registry are all explicit; nothing
    is looked up from ambient state. Every state-changing step waits for its confirmation
    before the next one starts and every failure propagates to the caller untouched.
    """

    def __init__(
        self,
        registry: ArtifactRegistry,
        client: ChainClient,
        signer: Any,
        proxy_contract: str = PROXY_CONTRACT_NAME,
        log_output: bool = False,
    ):
        self.registry = registry
        self.client = client
        self.signer = signer
        self.proxy_contract = proxy_contract
        self.log_output = log_output

    def _log(self, message: str) -> None:
        if self.log_output:
            print(message)

    #
    # Building blocks
    #

    def _deploy_implementation(
        self, artifact: ContractArtifact, creation_code: bytes
    ) -> ChecksumAddress:
        implementation_address = self.client.deploy(self.signer, creation_code)
        self._log(f"{artifact.name} impl.: {implementation_address}")
        return implementation_address

    def _deploy_proxy_contract(
        self, target: ContractArtifact, implementation_address: ChecksumAddress, data: bytes
    ) -> ChecksumAddress:
        proxy_artifact = self.registry.get(self.proxy_contract)
        creation_code = proxy_artifact.creation_code(
            constructor_args=[implementation_address, HexBytes(data)]
        )
        proxy_address = self.client.deploy(self.signer, creation_code)
        self._log(f"{target.name} proxy: {proxy_address}")
        return proxy_address

    def _check_implementation(
        self, proxy_address: ChecksumAddress, expected_implementation: ChecksumAddress
    ) -> None:
        implementation_address = get_implementation_address(self.client, proxy_address)
        if not compare_addresses(implementation_address, expected_implementation):
            raise ImplementationMismatch(
                f"The implementation address is not the one expected: "
                f"{implementation_address} !== {expected_implementation}"
            )

    def _check_version(self, contract: ContractHandle, expected_version: int) -> None:
        if not contract.artifact.has_method(VERSION_METHOD_NAME):
            self._log(f"(i) {contract.name} has no version() accessor; skipping version check")
            return
        reported_version = contract.version()
        self._log(f"New {contract.name} version: {reported_version}")
        if reported_version != int(expected_version):
            raise VersionMismatch(
                f"{contract.name} version is not {expected_version}: {reported_version}"
            )

    @staticmethod
    def _resolve_upgrade_data(
        previous_artifact: ContractArtifact,
        new_artifact: ContractArtifact,
        args: Sequence[Any],
        version: Optional[int],
    ) -> HexBytes:
        if version and not new_artifact.has_method(initializer_name(version)):
            raise InitializerNotFound(new_artifact.name, initializer_name(version))
        if not previous_artifact.has_method(UPGRADE_METHOD_NAME):
            raise MethodNotFound(previous_artifact.name, UPGRADE_METHOD_NAME)
        if args:
            return get_initializer_data(new_artifact, args, version)
        return EMPTY_DATA

    def _validate_proxy_constructor(self) -> None:
        # resolves the proxy artifact and links it before anything is sent
        self.registry.get(self.proxy_contract).link()

    #
    # Proxy Deployer
    #

    def deploy_proxy(
        self,
        contract_name: str,
        args: Sequence[Any] = (),
        libraries: Optional[LibraryMap] = None,
        version: Optional[int] = None,
    ) -> ContractHandle:
        """
        Deploys `contract_name` as a fresh implementation plus a proxy pointing at it.
        The proxy constructor delegates the encoded `initialize`/`initializeV{version}`
        call to the implementation.
        """
        artifact = self.registry.get(contract_name)

        # everything that can be checked offline is checked before the first deployment
        initializer_data = get_initializer_data(artifact, args, version)
        creation_code = artifact.creation_code(libraries=libraries)
        self._validate_proxy_constructor()

        implementation_address = self._deploy_implementation(artifact, creation_code)
        proxy_address = self._deploy_proxy_contract(
            artifact, implementation_address, initializer_data
        )
        self._check_implementation(proxy_address, implementation_address)
        return ContractHandle(address=proxy_address, artifact=artifact, client=self.client)

    def deploy_proxy_only(
        self, contract_name: str, libraries: Optional[LibraryMap] = None
    ) -> ChecksumAddress:
        """Deploys an implementation and a proxy without calling any initializer."""
        artifact = self.registry.get(contract_name)
        creation_code = artifact.creation_code(libraries=libraries)
        self._validate_proxy_constructor()

        implementation_address = self._deploy_implementation(artifact, creation_code)
        proxy_address = self._deploy_proxy_contract(artifact, implementation_address, EMPTY_DATA)
        self._check_implementation(proxy_address, implementation_address)
        return proxy_address

    #
    # Proxy Upgrader
    #

    def upgrade_proxy(
        self,
        previous_contract_name: str,
        new_contract_name: str,
        proxy_address: Any,
        args: Sequence[Any] = (),
        version: Optional[int] = None,
        libraries: Optional[LibraryMap] = None,
        expected_version: Optional[int] = None,
        skip_if_current: bool = False,
    ) -> ContractHandle:
        """
        Deploys `new_contract_name` and repoints the proxy to it through the
        `upgradeToAndCall` entry point of `previous_contract_name`.

        `version` selects `initializeV{version}`; the initializer must exist on the new
        interface whenever a version is given, but it is only called when `args` is
        non-empty. After the upgrade the contract must report `expected_version`
        (defaults to `version`) from its version() accessor.

        With `skip_if_current`, a proxy that already reports the expected version is
        returned as is and nothing is deployed. Otherwise every call deploys a new
        implementation, even when repeated with the same arguments.
        """
        previous_artifact = self.registry.get(previous_contract_name)
        new_artifact = self.registry.get(new_contract_name)
        proxy_address = to_address(proxy_address)
        if expected_version is None:
            expected_version = version

        data = self._resolve_upgrade_data(previous_artifact, new_artifact, args, version)
        creation_code = new_artifact.creation_code(libraries=libraries)

        proxy = ContractHandle(address=proxy_address, artifact=previous_artifact, client=self.client)
        if skip_if_current:
            if expected_version is None:
                raise ConfigurationError("skip_if_current requires a target version")
            current_version = proxy.version()
            self._log(f"Current {previous_artifact.name} version: {current_version}")
            if current_version == int(expected_version):
                print(
                    f"(i) {new_artifact.name} at {proxy_address} is already at "
                    f"version {expected_version}; skipping upgrade"
                )
                return proxy.at(new_artifact)

        implementation_address = self._deploy_implementation(new_artifact, creation_code)
        proxy.transact(self.signer, UPGRADE_METHOD_NAME, implementation_address, data)
        self._check_implementation(proxy_address, implementation_address)

        upgraded = proxy.at(new_artifact)
        if expected_version is not None:
            self._check_version(upgraded, expected_version)
        return upgraded

    def check_upgrade(
        self,
        previous_contract_name: str,
        new_contract_name: str,
        args: Sequence[Any] = (),
        version: Optional[int] = None,
        library_names: Sequence[str] = (),
        links: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        """
        Offline checks of an upgrade whose libraries are not deployed yet: both
        interfaces, the initializer and its arguments, and that the listed libraries
        (deployed in order, each after the libraries it links) cover the new implementation.
        """
        previous_artifact = self.registry.get(previous_contract_name)
        new_artifact = self.registry.get(new_contract_name)
        self._resolve_upgrade_data(previous_artifact, new_artifact, args, version)

        links = links or dict()
        for position, library_name in enumerate(library_names):
            self.registry.get(library_name)
            missing = set(links.get(library_name, [])) - set(library_names[:position])
            if missing:
                raise ConfigurationError(
                    f"{library_name} depends on libraries not deployed before it: "
                    f"{', '.join(sorted(missing))}"
                )
        missing = set(new_artifact.required_libraries) - set(library_names)
        if missing:
            raise LinkError(
                f"{new_artifact.name} is missing links for the following libraries: "
                f"{', '.join(sorted(missing))}"
            )

    #
    # Multi-Step Upgrade Runner
    #

    def deploy_and_upgrade(
        self,
        contract_names: Sequence[str],
        args: Sequence[Sequence[Any]],
        libraries: Optional[Sequence[Optional[LibraryMap]]] = None,
        versions: Optional[Sequence[Optional[int]]] = None,
    ) -> ContractHandle:
        """
        Deploys contract_names[0] behind a proxy and upgrades it through every following
        contract name, in order. Step i uses args[i], libraries[i] and versions[i].
        """
        validate_upgrade_steps(contract_names, args, libraries=libraries, versions=versions)
        libraries = libraries or [None] * len(contract_names)
        versions = versions or [None] * len(contract_names)

        proxy = self.deploy_proxy(
            contract_names[0], args[0], libraries=libraries[0], version=versions[0]
        )
        for i in range(1, len(contract_names)):
            proxy = self.upgrade_proxy(
                previous_contract_name=contract_names[i - 1],
                new_contract_name=contract_names[i],
                proxy_address=proxy.address,
                args=args[i],
                version=versions[i],
                libraries=libraries[i],
            )
        return proxy

    #
    # Initializers
    #

    def initialize_proxy(
        self,
        proxy_address: Any,
        contract_name: str,
        args: Sequence[Any] = (),
        libraries: Optional[LibraryMap] = None,
        version: Optional[int] = None,
    ) -> ContractHandle:
        """Calls the (versioned) initializer of an already deployed proxy."""
        artifact = self.registry.get(contract_name)
        artifact.check_links(libraries)
        data = get_initializer_data(artifact, args, version)
        proxy = ContractHandle(address=to_address(proxy_address), artifact=artifact, client=self.client)
        self.client.transact(self.signer, proxy.address, data)
        return proxy

    def initialize_proxy_all_versions(
        self,
        contract_name: str,
        proxy_address: Any,
        initializer_calls: Sequence[Tuple[Optional[int], Sequence[Any]]],
    ) -> ContractHandle:
        """
        Runs each (version, args) initializer in order against the proxy. The signer must
        hold UPGRADER_ROLE before the first versioned initializer is sent.
        """
        artifact = self.registry.get(contract_name)
        proxy = ContractHandle(address=to_address(proxy_address), artifact=artifact, client=self.client)
        encoded_calls = [
            (version, get_initializer_data(artifact, args, version))
            for version, args in initializer_calls
        ]

        upgrader_checked = False
        for version, data in encoded_calls:
            self._log(f"Initializing {contract_name} V{version or 1}...")
            if version is not None and not upgrader_checked:
                self.check_upgrader_role(proxy)
                upgrader_checked = True
            self.client.transact(self.signer, proxy.address, data)
        return proxy

    def deploy_and_initialize_latest(
        self,
        contract_name: str,
        initializer_calls: Sequence[InitializerCall],
        libraries: Optional[LibraryMap] = None,
    ) -> ContractHandle:
        """Deploys an uninitialized proxy, then sends each named initializer call to it."""
        artifact = self.registry.get(contract_name)
        encoded_calls = [artifact.encode_input(call.name, *call.args) for call in initializer_calls]

        proxy_address = self.deploy_proxy_only(contract_name, libraries=libraries)
        for data in encoded_calls:
            self.client.transact(self.signer, proxy_address, data)
        return ContractHandle(address=proxy_address, artifact=artifact, client=self.client)

    def check_upgrader_role(self, contract: ContractHandle) -> None:
        signer_address = to_address(self.signer)
        if not contract.artifact.has_method(HAS_ROLE_METHOD_NAME):
            raise MissingUpgraderRole(f"{contract.name} does not expose roles; cannot check upgrader")
        if not contract.call(HAS_ROLE_METHOD_NAME, UPGRADER_ROLE, signer_address):
            raise MissingUpgraderRole(
                f"Signer {signer_address} is missing UPGRADER_ROLE. Cancelling upgrade."
            )

    #
    # Libraries
    #

    def deploy_library(
        self, library_name: str, libraries: Optional[LibraryMap] = None
    ) -> ChecksumAddress:
        artifact = self.registry.get(library_name)
        library_address = self.client.deploy(self.signer, artifact.creation_code(libraries=libraries))
        self._log(f"{library_name}: {library_address}")
        return library_address

    def deploy_libraries(
        self,
        library_names: Sequence[str],
        links: Optional[Dict[str, List[str]]] = None,
        libraries: Optional[LibraryMap] = None,
    ) -> Dict[str, ChecksumAddress]:
        """
        Deploys libraries in order. `links` lists, per library, the libraries it must be
        linked against; those must be either pre-deployed (`libraries`) or deployed earlier
        in the same call.
        """
        links = links or dict()
        deployed = dict(libraries or {})
        for library_name in library_names:
            dependencies = links.get(library_name, [])
            missing = [d for d in dependencies if d not in deployed]
            if missing:
                raise ConfigurationError(
                    f"{library_name} depends on libraries not deployed yet: {', '.join(missing)}"
                )
            library_links = {d: deployed[d] for d in dependencies}
            deployed[library_name] = self.deploy_library(library_name, libraries=library_links)
        return {name: deployed[name] for name in library_names}


def validate_upgrade_steps(
    contract_names: Sequence[str],
    args: Sequence[Sequence[Any]],
    libraries: Optional[Sequence[Any]] = None,
    versions: Optional[Sequence[Any]] = None,
) -> None:
    """Checks the shape of a multi-step deploy/upgrade call; touches nothing on chain."""
    if not contract_names:
        raise ConfigurationError("No contracts to deploy")
    if len(contract_names) != len(args):
        raise ConfigurationError(
            f"Contract {list(contract_names)} and arguments must have the same length"
        )
    check_same_length("libraries", len(contract_names), libraries)
    check_same_length("versions", len(contract_names), versions)
