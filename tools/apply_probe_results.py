#!/usr/bin/env python3
"""
Dev-only: turn address-probe results into a plantbridge mapping file.

The probe output is a JSON list of {"name": TAG, "match": ADDRESS | null}. Entries
with a match are kept, every address is parsed for the chosen protocol, and the
result is written as a {tag: address} JSON object that --map-file accepts.

Usage (from repo root, after pip install -e .):
  python tools/apply_probe_results.py [--input PATH] [--output PATH] [--protocol s7|modbus]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from plantbridge.address import format_address, parse_address
from plantbridge.errors import InvalidAddressError
from plantbridge.types import Protocol

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def build_mapping(results: list[dict], protocol: Protocol) -> dict[str, str]:
    """
    Keep matched entries and normalize their addresses.
    Raises ValueError on duplicate names and InvalidAddressError on a bad match.
    """
    mapping: dict[str, str] = {}
    for entry in results:
        name = str(entry.get("name") or "").strip().upper()
        match = entry.get("match")
        if not name:
            logger.warning("Skipping entry without a name: %r", entry)
            continue
        if not match:
            logger.info("No match for %s, skipped", name)
            continue
        if name in mapping:
            raise ValueError(f"Duplicate tag in probe results: {name}")
        mapping[name] = format_address(parse_address(str(match), protocol))
    return mapping


def main() -> int:
    parser = argparse.ArgumentParser(description="Write a plantbridge mapping file from probe results.")
    parser.add_argument("--input", type=Path, default=Path("probe_results.json"), help="Probe results JSON")
    parser.add_argument("--output", type=Path, default=Path("plantbridge_map.json"), help="Mapping file to write")
    parser.add_argument("--protocol", choices=[p.value for p in Protocol], default=Protocol.S7.value)
    args = parser.parse_args()

    if not args.input.is_file():
        logger.error("No probe results at %s", args.input)
        return 1
    with open(args.input, encoding="utf-8") as f:
        results = json.load(f)
    if not isinstance(results, list):
        logger.error("%s must hold a JSON list of {name, match} objects", args.input)
        return 1

    try:
        mapping = build_mapping(results, Protocol(args.protocol))
    except (ValueError, InvalidAddressError) as e:
        logger.error("%s", e)
        return 1
    if not mapping:
        logger.error("No matched entries in %s; nothing written", args.input)
        return 1

    args.output.parent.mkdir(parents=True, exist_ok=True)
    with open(args.output, "w", encoding="utf-8") as f:
        json.dump(mapping, f, indent=2)
    logger.info("Wrote %d entries to %s", len(mapping), args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
