"""Process lifecycle: connect, run until a termination signal, drain, disconnect, exit code."""

import asyncio
import logging
import signal

from .context import BridgeContext
from .errors import BridgeConnectionError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_CONNECTION = 3
EXIT_UNEXPECTED = 4

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _install_signal_handlers(context: BridgeContext) -> list[signal.Signals]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in _STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, context.scheduler.stop)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform/loop; KeyboardInterrupt still ends the run.
            continue
        installed.append(sig)
    return installed


def _remove_signal_handlers(installed: list[signal.Signals]) -> None:
    loop = asyncio.get_running_loop()
    for sig in installed:
        loop.remove_signal_handler(sig)


async def _drive(context: BridgeContext, grace_s: float, max_cycles: int | None) -> None:
    """Run the scheduler; once stop is requested, give the in-flight cycle at most grace_s."""
    scheduler = context.scheduler
    run_task = asyncio.create_task(scheduler.run(max_cycles=max_cycles))
    stop_task = asyncio.create_task(scheduler.wait_stop_requested())
    try:
        await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if not run_task.done():
            await asyncio.wait({run_task}, timeout=grace_s)
            if not run_task.done():
                logger.warning("In-flight cycle did not finish within %.1fs grace period; cancelled", grace_s)
                run_task.cancel()
                await asyncio.wait({run_task})
                return
    finally:
        stop_task.cancel()
        if not run_task.done():
            run_task.cancel()
    run_task.result()


async def run_bridge(
    context: BridgeContext,
    grace_s: float = 10.0,
    max_cycles: int | None = None,
    handle_signals: bool = True,
) -> int:
    """
    Run the bridge to completion and return the process exit code.

    0 after a graceful stop (or after max_cycles), 3 on a connection fault at
    startup or mid-run, 4 on any unexpected error. Signal handlers are installed
    before connecting, so a stop requested during startup still releases whatever
    connected and runs no cycle.
    """
    installed = _install_signal_handlers(context) if handle_signals else []
    try:
        await context.startup()
    except BridgeConnectionError as e:
        _remove_signal_handlers(installed)
        logger.error("Startup failed: %s", e)
        return EXIT_CONNECTION

    exit_code = EXIT_OK
    try:
        logger.info(
            "Bridge active: %d mappings under %s, publishing every %.1fs",
            len(context.table),
            context.namespace.prefix,
            context.scheduler.period_s,
        )
        await _drive(context, grace_s, max_cycles)
    except BridgeConnectionError as e:
        logger.error("Endpoint fault, shutting down: %s", e)
        exit_code = EXIT_CONNECTION
    except Exception:
        logger.exception("Unexpected error in bridge loop")
        exit_code = EXIT_UNEXPECTED
    finally:
        _remove_signal_handlers(installed)
        await context.shutdown()
    return exit_code
