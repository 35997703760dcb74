#!/usr/bin/env python3
"""Example: poll the plant tags on an interval with Poller; graceful shutdown on Ctrl+C."""

import asyncio

from plantbridge import BridgeConfig, PlantSnapshot, PlcSession, get_default_map
from plantbridge.bridge import create_driver
from plantbridge.poller import Poller


async def show(snapshot: PlantSnapshot) -> None:
    print(snapshot.to_dict())


async def run(config: BridgeConfig, tags: list[str]) -> None:
    session = PlcSession(create_driver(config), get_default_map(config.protocol), timeout=config.timeout)
    poller = Poller(session, tags, show, interval=config.poll_interval)
    try:
        # An unreachable PLC yields degraded snapshots; the poller keeps reconnecting
        await poller.run()
    finally:
        await session.close()


def main() -> None:
    config = BridgeConfig(plc_host="192.168.0.10", poll_interval=1.0)  # change to your PLC IP
    tags = ["ARIDO1", "ARIDO2", "ARIDO3", "PESO", "COMP1", "COMP2", "COMP3", "COMP4", "COMP5"]

    print(f"Polling {tags} every {config.poll_interval}s (Ctrl+C to stop)...")
    try:
        asyncio.run(run(config, tags))
    except KeyboardInterrupt:
        print("\nStopped.")


if __name__ == "__main__":
    main()
