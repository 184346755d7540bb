import json
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address

from upgrades.chain import ContractHandle
from upgrades.constants import LIBRARIES_FILENAME
from upgrades.utils import _load_json

ChainId = int
ContractName = str


STANDARD_REGISTRY_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


class RegistryEntry(NamedTuple):
    """Represents a single proxied contract in a deployment registry."""

    chain_id: ChainId
    name: ContractName
    contract_type: str
    proxy: ChecksumAddress
    implementation: ChecksumAddress
    version: Optional[int]
    deployer: str
    libraries: Optional[Dict[str, ChecksumAddress]] = None


def entry_from_handle(
    handle: ContractHandle,
    chain_id: ChainId,
    deployer: str,
    name: Optional[ContractName] = None,
    version: Optional[int] = None,
    libraries: Optional[Dict[str, ChecksumAddress]] = None,
) -> RegistryEntry:
    """Builds a registry entry for a proxy handle returned by the ProxyDeployer."""
    return RegistryEntry(
        chain_id=chain_id,
        name=name or handle.name,
        contract_type=handle.name,
        proxy=to_checksum_address(handle.address),
        implementation=handle.implementation(),
        version=version,
        deployer=deployer,
        libraries=dict(libraries) if libraries else None,
    )


def read_registry(filepath: Path) -> List[RegistryEntry]:
    data = _load_json(filepath)
    registry_entries = list()
    for chain_id, entries in data.items():
        for contract_name, record in entries.items():
            registry_entry = RegistryEntry(
                chain_id=int(chain_id),
                name=contract_name,
                contract_type=record.get("contract_type", contract_name),
                proxy=record["proxy"],
                implementation=record["implementation"],
                version=record.get("version"),
                deployer=record["deployer"],
                libraries=record.get("libraries") or None,
            )
            registry_entries.append(registry_entry)
    return registry_entries


def write_registry(entries: List[RegistryEntry], filepath: Path, silent: bool = False) -> Path:
    """Writes a deployment registry to a file, merging into an existing one if possible."""

    if not entries:
        print("No entries provided.")
        return filepath

    entries = sorted(entries, key=lambda entry: (str(entry.chain_id), entry.name))

    data = defaultdict(dict)
    for entry in entries:
        data[str(entry.chain_id)][entry.name] = {
            "contract_type": entry.contract_type,
            "proxy": entry.proxy,
            "implementation": entry.implementation,
            "version": entry.version,
            "deployer": entry.deployer,
            "libraries": dict(sorted((entry.libraries or {}).items())),
        }

    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    if filepath.exists():
        if not silent:
            print(f"Updating existing registry at {filepath}.")
        existing_data = _load_json(filepath)

        overlapping = [
            (chain_id, name)
            for chain_id, chain_entries in data.items()
            for name in chain_entries
            if name in existing_data.get(chain_id, {})
        ]
        if overlapping:
            filepath = filepath.with_suffix(".unmerged.json")
            if not silent:
                print(
                    "Cannot merge registries with overlapping entries "
                    f"({', '.join(name for _, name in overlapping)}).\n"
                    f"Writing to {filepath} to avoid overwriting existing data."
                )
        else:
            for chain_id, chain_entries in data.items():
                existing_data.setdefault(chain_id, {}).update(chain_entries)
            data = existing_data
    elif not silent:
        print(f"Creating new registry at {filepath}.")

    with open(filepath, "w") as file:
        json.dump(data, file, **STANDARD_REGISTRY_JSON_FORMAT)

    return filepath


def update_registry_entry(entry: RegistryEntry, filepath: Path) -> Path:
    """Replaces (or adds) a single entry, e.g. after upgrading a proxy to a new version."""
    filepath = Path(filepath)
    existing = read_registry(filepath) if filepath.exists() else []
    entries = [
        e for e in existing if not (e.chain_id == entry.chain_id and e.name == entry.name)
    ]
    entries.append(entry)

    # written next to the registry, then swapped in
    temp_filepath = filepath.with_suffix(".tmp.json")
    if temp_filepath.exists():
        temp_filepath.unlink()
    write_registry(entries=entries, filepath=temp_filepath, silent=True)
    temp_filepath.replace(filepath)
    return filepath


def get_entry(filepath: Path, chain_id: ChainId, name: ContractName) -> RegistryEntry:
    for entry in read_registry(filepath):
        if entry.chain_id == chain_id and entry.name == name:
            return entry
    raise ValueError(f"No registry entry for {name} on chain id {chain_id} in {filepath}")


def save_libraries_to_file(
    libraries: Dict[ContractName, Dict[str, ChecksumAddress]], directory: Path
) -> Path:
    """Writes deployed library addresses, grouped by the contract that links them."""
    filepath = Path(directory) / LIBRARIES_FILENAME
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "w") as file:
        json.dump(libraries, file, **STANDARD_REGISTRY_JSON_FORMAT)
    print(f"(i) Libraries written to {filepath}")
    return filepath
