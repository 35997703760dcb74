#!/usr/bin/env python3
"""Example: connect to the plant PLC, read a few tags and send a set point through the gateway."""

import asyncio
import sys

from plantbridge import BridgeConfig, CommandGateway, PlcSession, get_default_map
from plantbridge.bridge import create_driver
from plantbridge.errors import SessionError, UnknownTagError, ValidationError


async def run(config: BridgeConfig) -> None:
    address_map = get_default_map(config.protocol)
    session = PlcSession(create_driver(config), address_map, timeout=config.timeout)
    gateway = CommandGateway(session)
    try:
        await session.connect()

        # One batched read; tags the PLC did not answer are simply absent
        values = await session.read_all(["ARIDO1", "ARIDO2", "ARIDO3", "PESO", "COMP1"])
        print(f"read_all: {values}")

        # Explain a tag
        print(f"ARIDO1 -> {address_map.resolve('ARIDO1')}")

        # Set point (0-100); out-of-range values never reach the PLC
        await gateway.set_point("ARIDO1", 25)

        # Start pulse (uncomment on a plant that is ready to run)
        # await gateway.start()
    finally:
        await gateway.aclose()
        await session.close()


def main() -> None:
    config = BridgeConfig(plc_host="192.168.0.10")  # change to your PLC IP; protocol="modbus" for Modbus TCP

    try:
        asyncio.run(run(config))
    except UnknownTagError as e:
        print(f"Unknown tag: {e}", file=sys.stderr)
        sys.exit(1)
    except ValidationError as e:
        print(f"Rejected: {e}", file=sys.stderr)
        sys.exit(1)
    except SessionError as e:
        print(f"PLC/connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
