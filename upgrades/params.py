import typing
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from eth_utils import is_address, to_checksum_address

from upgrades.artifacts import (
    ArtifactRegistry,
    InitializerNotFound,
    ResolutionError,
    get_initializer_data,
    initializer_name,
)
from upgrades.chain import ContractHandle
from upgrades.proxy import ProxyDeployer, validate_upgrade_steps
from upgrades.utils import ConfigurationError, _load_yaml

PLAN_STEPS_KEY = "steps"
PLAN_DEPLOYMENT_KEY = "deployment"
PLAN_CONSTANTS_KEY = "constants"


class VariableContext:
    def __init__(
        self,
        constants: typing.Dict[str, Any] = None,
        addresses: typing.Dict[str, str] = None,
        deployer_address: Optional[str] = None,
    ):
        self.constants = constants or dict()
        self.addresses = addresses or dict()
        self.deployer_address = deployer_address


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self) -> Any:
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        return isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)


class DeployerAccount(Variable):
    DEPLOYER_INDICATOR = "deployer"

    def __init__(self, context: VariableContext):
        if not context.deployer_address:
            raise UpgradePlan.Invalid("'$deployer' used but no deployer account was provided.")
        self.address = to_checksum_address(context.deployer_address)

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        return value == cls.DEPLOYER_INDICATOR

    def resolve(self) -> Any:
        return self.address


class Constant(Variable):
    def __init__(self, constant_name: str, context: VariableContext):
        try:
            self.constant_value = context.constants[constant_name]
        except KeyError:
            raise UpgradePlan.Invalid(f"Constant '{constant_name}' not found in upgrade plan.")

    @classmethod
    def is_constant(cls, value: str) -> bool:
        """Returns True if the variable is a plan constant."""
        return value.isupper()

    def resolve(self) -> Any:
        return self.constant_value


class ContractAddress(Variable):
    """An address from the environment's address book (contracts, libraries...)."""

    def __init__(self, contract_name: str, context: VariableContext):
        address = context.addresses.get(contract_name)
        if address is None:
            raise UpgradePlan.Invalid(f"Address for '{contract_name}' not found")
        if not is_address(address):
            raise UpgradePlan.Invalid(f"'{address}' for '{contract_name}' is not an address")
        self.contract_name = contract_name
        self.address = to_checksum_address(address)

    def resolve(self) -> Any:
        return self.address


def _variable_from_value(variable: str, context: VariableContext) -> Variable:
    variable = variable[len(Variable.VARIABLE_PREFIX) :]
    if DeployerAccount.is_deployer(variable):
        return DeployerAccount(context)
    elif variable in context.constants:
        return Constant(variable, context)
    elif variable in context.addresses or not Constant.is_constant(variable):
        return ContractAddress(variable, context)
    else:
        return Constant(variable, context)


def _process_raw_value(value: Any, context: VariableContext) -> Any:
    if isinstance(value, list):
        return [_process_raw_value(v, context) for v in value]
    if isinstance(value, dict):
        return {k: _process_raw_value(v, context) for k, v in value.items()}
    if Variable.is_variable(value):
        value = _variable_from_value(value, context)
    return value


def _resolve_param(value: Any) -> Any:
    """Resolves a single parameter value or a list of parameter values."""
    if isinstance(value, list):
        return [_resolve_param(v) for v in value]
    if isinstance(value, dict):
        return {k: _resolve_param(v) for k, v in value.items()}
    if isinstance(value, Variable):
        return value.resolve()
    return value  # literally a value


class UpgradeStep(typing.NamedTuple):
    contract: str
    args: List[Any]
    version: Optional[int] = None
    libraries: Optional[Dict[str, Any]] = None


class UpgradePlan:
    """
    A declarative deploy-then-upgrade sequence loaded from YAML:

        deployment:
          name: galaxy-member-local
          chain_id: 1337
        constants:
          BASE_URI: ipfs://...
        steps:
          - contract: GalaxyMemberV1
            args: [[$deployer, $B3TRGovernor, $BASE_URI]]
          - contract: GalaxyMember
            version: 2
            args: [$VeBetterPassport]
            libraries:
              GalaxyMemberUtils: $GalaxyMemberUtils

    `$deployer` is the signer's address, `$UPPER_CASE` a plan constant and `$Name`
    an address from the environment's address book. Constants win over addresses
    of the same name; upper-case names only found in the address book are addresses.
    """

    class Invalid(ConfigurationError):
        """Raised when an upgrade plan is malformed or does not match the contracts ABI"""

    def __init__(self, name: str, chain_id: Optional[int], steps: List[UpgradeStep]):
        self.name = name
        self.chain_id = chain_id
        self.steps = steps
        try:
            validate_upgrade_steps(
                contract_names=self.contract_names,
                args=self.args,
            )
        except ConfigurationError as e:
            raise self.Invalid(str(e))

    @classmethod
    def from_config(
        cls,
        config: typing.Dict,
        addresses: Optional[typing.Dict[str, str]] = None,
        deployer_address: Optional[str] = None,
    ) -> "UpgradePlan":
        print("Processing upgrade plan...")
        if not isinstance(config, dict):
            raise cls.Invalid("Malformed upgrade plan YAML.")
        deployment = config.get(PLAN_DEPLOYMENT_KEY) or dict()
        raw_steps = config.get(PLAN_STEPS_KEY)
        if not raw_steps:
            raise cls.Invalid("Upgrade plan is missing 'steps' field.")

        context = VariableContext(
            constants=config.get(PLAN_CONSTANTS_KEY),
            addresses=addresses,
            deployer_address=deployer_address,
        )
        steps = [cls._process_step(raw_step, context) for raw_step in raw_steps]
        chain_id = deployment.get("chain_id")
        return cls(
            name=deployment.get("name", "upgrade-plan"),
            chain_id=int(chain_id) if chain_id is not None else None,
            steps=steps,
        )

    @classmethod
    def from_yaml(cls, filepath: Path, *args, **kwargs) -> "UpgradePlan":
        config = _load_yaml(filepath)
        return cls.from_config(config, *args, **kwargs)

    @classmethod
    def _process_step(cls, raw_step: Any, context: VariableContext) -> UpgradeStep:
        if isinstance(raw_step, str):
            raw_step = {"contract": raw_step}
        if not isinstance(raw_step, dict) or "contract" not in raw_step:
            raise cls.Invalid(f"Malformed upgrade plan step: {raw_step}")

        unknown_keys = set(raw_step) - set(UpgradeStep._fields)
        if unknown_keys:
            raise cls.Invalid(f"Unknown key(s) in step {raw_step['contract']}: {unknown_keys}")

        args = raw_step.get("args") or []
        if not isinstance(args, list):
            raise cls.Invalid(f"'args' of step {raw_step['contract']} must be a list")
        libraries = raw_step.get("libraries")
        if libraries is not None and not isinstance(libraries, dict):
            raise cls.Invalid(f"'libraries' of step {raw_step['contract']} must be a mapping")

        version = raw_step.get("version")
        return UpgradeStep(
            contract=raw_step["contract"],
            args=_process_raw_value(args, context),
            version=int(version) if version is not None else None,
            libraries=_process_raw_value(libraries, context) if libraries else None,
        )

    @property
    def contract_names(self) -> List[str]:
        return [step.contract for step in self.steps]

    @property
    def args(self) -> List[List[Any]]:
        return [_resolve_param(step.args) for step in self.steps]

    @property
    def versions(self) -> List[Optional[int]]:
        return [step.version for step in self.steps]

    @property
    def libraries(self) -> List[Optional[Dict[str, str]]]:
        return [_resolve_param(step.libraries) if step.libraries else None for step in self.steps]

    def validate(self, registry: ArtifactRegistry) -> None:
        """Checks every step against the artifacts, without touching the chain."""
        print(f"Validating upgrade plan '{self.name}'...")
        for position, (step, args, libraries) in enumerate(
            zip(self.steps, self.args, self.libraries)
        ):
            try:
                artifact = registry.get(step.contract)
                artifact.link(libraries)
                if position == 0 or args:
                    get_initializer_data(artifact, args, step.version)
                elif step.version and not artifact.has_method(initializer_name(step.version)):
                    raise InitializerNotFound(artifact.name, initializer_name(step.version))
            except (ResolutionError, ConfigurationError) as e:
                raise self.Invalid(f"Step {position} ({step.contract}): {e}")

    def execute(self, deployer: ProxyDeployer) -> ContractHandle:
        self.validate(deployer.registry)
        return deployer.deploy_and_upgrade(
            contract_names=self.contract_names,
            args=self.args,
            libraries=self.libraries,
            versions=self.versions,
        )

    def describe(self) -> str:
        lines = [f"Upgrade plan '{self.name}' (chain id {self.chain_id})"]
        for position, (step, args) in enumerate(zip(self.steps, self.args)):
            initializer = initializer_name(step.version) if (position == 0 or args) else "-"
            lines.append(f"\t{position}. {step.contract} {initializer} {args}")
        return "\n".join(lines)


def resolve_values(values: Any, context: VariableContext) -> Any:
    """Resolves plan-style `$variables` found anywhere in `values`."""
    return _resolve_param(_process_raw_value(values, context))
