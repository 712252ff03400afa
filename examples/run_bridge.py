#!/usr/bin/env python3
"""Example: bridge the packaged filling line table to a local broker; graceful shutdown on Ctrl+C."""

import asyncio
import logging
import sys

from uns_bridge.config import BridgeSettings, build_context
from uns_bridge.errors import MappingError
from uns_bridge.runtime import run_bridge


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s: %(message)s")
    settings = BridgeSettings(
        endpoint="opc.tcp://localhost:4840",  # change to your OPC UA server
        accept_untrusted=True,  # development server without certificates
        broker="localhost",
        namespace="v1/beverage/plant-1/filling/line-1",
        period_s=3.0,
    )

    try:
        context = build_context(settings)
    except MappingError as e:
        print(f"Invalid mapping table: {e}", file=sys.stderr)
        sys.exit(2)

    print(f"Bridging {len(context.table)} tags every {settings.period_s}s (Ctrl+C to stop)...")
    sys.exit(asyncio.run(run_bridge(context, grace_s=settings.grace_s)))


if __name__ == "__main__":
    main()
