"""AddressMap: logical tag -> physical address, from a mapping file or the packaged defaults."""

import json
import logging
from importlib import resources
from pathlib import Path
from typing import Any, Iterable, Iterator

from .address import parse_address
from .errors import UnknownTagError
from .types import PhysicalAddress, Protocol

logger = logging.getLogger(__name__)

_DEFAULT_RESOURCE: dict[Protocol, str] = {
    Protocol.S7: "s7_map.json",
    Protocol.MODBUS: "modbus_map.json",
}


def _entries_from_json(data: Any) -> list[tuple[str, str]]:
    """Accept {"TAG": "ADDR"}, [{"tag": .., "address": ..}] or {"entries": [...]}."""
    if isinstance(data, dict) and "entries" in data:
        data = data["entries"]
    if isinstance(data, dict):
        return [(str(tag), str(addr)) for tag, addr in data.items()]
    if isinstance(data, list):
        pairs: list[tuple[str, str]] = []
        seen: set[str] = set()
        for entry in data:
            if not isinstance(entry, dict):
                continue  # tolerate stray items
            tag = str(entry["tag"])
            if tag in seen:
                raise ValueError(f"Duplicate tag in map: {tag}")
            seen.add(tag)
            pairs.append((tag, str(entry["address"])))
        return pairs
    return []


class AddressMap:
    """
    Immutable, insertion-ordered map of logical tags to PhysicalAddress.
    Every address is parsed for the map's protocol at construction time.
    """

    def __init__(self, mapping: dict[str, str] | list[tuple[str, str]], protocol: Protocol | str = Protocol.S7) -> None:
        self._protocol = Protocol(protocol)
        pairs = list(mapping.items()) if isinstance(mapping, dict) else list(mapping)
        self._by_tag: dict[str, PhysicalAddress] = {}
        for tag, raw in pairs:
            if tag in self._by_tag:
                raise ValueError(f"Duplicate tag in map: {tag}")
            self._by_tag[tag] = parse_address(raw, self._protocol)
        self.source = "inline"

    def resolve(self, tag: str) -> PhysicalAddress:
        """Return the address for a tag; raise UnknownTagError if it is not mapped."""
        try:
            return self._by_tag[tag]
        except KeyError:
            raise UnknownTagError(tag) from None

    def require(self, tags: Iterable[str]) -> None:
        """Fail with UnknownTagError on the first tag that does not resolve."""
        for tag in tags:
            self.resolve(tag)

    def items(self) -> Iterator[tuple[str, PhysicalAddress]]:
        return iter(self._by_tag.items())

    def as_strings(self) -> dict[str, str]:
        return {tag: str(addr) for tag, addr in self._by_tag.items()}

    @property
    def tags(self) -> tuple[str, ...]:
        return tuple(self._by_tag)

    @property
    def protocol(self) -> Protocol:
        return self._protocol

    def __contains__(self, tag: object) -> bool:
        return tag in self._by_tag

    def __len__(self) -> int:
        return len(self._by_tag)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AddressMap):
            return NotImplemented
        return self._protocol == other._protocol and list(self.items()) == list(other.items())


def get_default_map(protocol: Protocol | str = Protocol.S7) -> AddressMap:
    """Load the built-in map for a protocol from the packaged JSON."""
    protocol = Protocol(protocol)
    name = _DEFAULT_RESOURCE[protocol]
    with resources.files("plantbridge.data").joinpath(name).open("r", encoding="utf-8") as f:
        data = json.load(f)
    amap = AddressMap(_entries_from_json(data), protocol)
    amap.source = f"builtin:{name}"
    logger.debug("AddressMap loaded built-in %s: %d entries", name, len(amap))
    return amap


def load_address_map(protocol: Protocol | str = Protocol.S7, path: str | Path | None = None) -> AddressMap:
    """
    Load the mapping file at `path` if it exists and has entries, else the built-in default.
    Malformed addresses in the file raise InvalidAddressError: a bad map is fatal at boot.
    """
    if path is not None:
        p = Path(path)
        if not p.is_file():
            logger.info("Mapping file %s not found, using built-in map", p)
        else:
            with open(p, encoding="utf-8") as f:
                text = f.read()
            pairs = _entries_from_json(json.loads(text)) if text.strip() else []
            if pairs:
                amap = AddressMap(pairs, protocol)
                amap.source = str(p)
                logger.info("AddressMap loaded from %s: %d entries", p, len(amap))
                return amap
            logger.info("Mapping file %s is empty, using built-in map", p)
    return get_default_map(protocol)
