import sys
from typing import Any, Sequence

from ape.utils import ZERO_ADDRESS


def _abort() -> None:
    print("Aborting upgrade!")
    sys.exit(-1)


def _continue() -> None:
    """Asks the user to continue."""
    answer = input("Continue Y/N? ")
    if answer.lower().strip() == "n":
        _abort()


def _confirm_zero_address() -> None:
    answer = input("Zero Address detected for initializer argument; Continue? Y/N? ")
    if answer.lower().strip() == "n":
        _abort()


def _confirm_upgrade(contract_label: str, version: str, env: str) -> None:
    """Asks the user to confirm a single upgrade; anything but an explicit yes aborts."""
    answer = input(
        f"Do you want to proceed with the upgrade of {contract_label} to version {version} "
        f"on environment {env}? Y/N? "
    )
    if answer.lower().strip() != "y":
        print("Upgrade aborted.")
        sys.exit(0)


def _confirm_resolution(args: Sequence[Any], initializer: str, contract_name: str) -> None:
    """Asks the user to confirm the resolved initializer arguments for a single contract."""
    if len(args) == 0:
        print(f"\n(i) No initializer arguments for {contract_name}")
        _continue()
        return

    print(f"\nArguments for {contract_name}.{initializer}")
    contains_zero_address = False
    for position, resolved_value in enumerate(args):
        print(f"\t[{position}]={resolved_value}")
        if not contains_zero_address:
            contains_zero_address = resolved_value == ZERO_ADDRESS
    _continue()
    if contains_zero_address:
        _confirm_zero_address()
