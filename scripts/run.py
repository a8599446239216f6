"""Main entry point for the pairagent scanner."""

from __future__ import annotations

import asyncio
import atexit
import os
import signal as os_signal
import sys
from pathlib import Path

# Ensure working directory is project root (needed for relative config paths)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
os.chdir(PROJECT_ROOT)
sys.path.insert(0, PROJECT_ROOT)

LOCK_FILE = Path(PROJECT_ROOT) / "data" / ".pairagent.lock"


def _is_process_running(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


def acquire_lock() -> None:
    """Ensure only one process instance runs at a time."""
    if LOCK_FILE.exists():
        try:
            old_pid = int(LOCK_FILE.read_text(encoding="utf-8").strip())
        except (ValueError, OSError):
            old_pid = -1

        if _is_process_running(old_pid):
            print(f"ERROR: Another instance is already running (PID {old_pid}).")
            print(f"If this is stale, remove {LOCK_FILE} and retry.")
            sys.exit(1)

        print(f"Removing stale lock file: {LOCK_FILE}")
        LOCK_FILE.unlink(missing_ok=True)

    LOCK_FILE.parent.mkdir(parents=True, exist_ok=True)
    LOCK_FILE.write_text(str(os.getpid()), encoding="utf-8")


def release_lock() -> None:
    """Remove lock file if this process owns it."""
    try:
        if LOCK_FILE.exists() and int(LOCK_FILE.read_text(encoding="utf-8").strip()) == os.getpid():
            LOCK_FILE.unlink(missing_ok=True)
    except (ValueError, OSError):
        pass


async def _run(settings) -> None:
    from pairagent.data.binance_provider import BinanceDataProvider
    from pairagent.data.pair_selector import build_selector
    from pairagent.orchestrator import ScanOrchestrator
    from pairagent.tracking.store import SqlitePositionStore

    store = SqlitePositionStore(settings.store.db_path)
    try:
        async with BinanceDataProvider(settings.data) as provider:
            orchestrator = ScanOrchestrator(
                settings,
                data_provider=provider,
                pair_selector=build_selector(settings.data),
                store=store,
            )

            loop = asyncio.get_running_loop()
            for sig in (os_signal.SIGINT, os_signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, orchestrator.stop)
                except NotImplementedError:
                    # Windows event loops have no add_signal_handler
                    os_signal.signal(sig, lambda *_: loop.call_soon_threadsafe(orchestrator.stop))

            await orchestrator.run_forever()
    finally:
        store.close()


def main() -> None:
    acquire_lock()
    atexit.register(release_lock)

    from pairagent.core.config import load_settings
    from pairagent.core.errors import ConfigError
    from pairagent.core.logging import setup_logging

    try:
        config_path = os.getenv("PAIRAGENT_CONFIG", "config/settings.yaml")
        try:
            settings = load_settings(config_path)
        except ConfigError as e:
            print(f"ERROR: {e}")
            sys.exit(1)

        setup_logging(
            level=settings.logging.level,
            log_file=settings.logging.file,
            json_format=settings.logging.json_format,
        )
        print(f"pairagent starting (selector={settings.data.selector}, config={config_path})")
        asyncio.run(_run(settings))
    finally:
        release_lock()


if __name__ == "__main__":
    main()
