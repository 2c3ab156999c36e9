"""Command-line entrypoint for appregistry-server."""

from __future__ import annotations

import signal
import sys
import threading
from typing import Any, Sequence

from appregistry.core.bootstrap import Bootstrap, BootstrapError
from appregistry.core.settings import SettingsError, load_settings
from appregistry.observability.logger import FATAL_EXTRA, get_logger

SHUTDOWN_GRACE_SECONDS = 5.0


def main(argv: Sequence[str] | None = None) -> int:
    logger = get_logger()

    try:
        settings = load_settings(argv)
    except SettingsError as e:
        logger.error(str(e), extra=FATAL_EXTRA)
        return 1

    bootstrap = Bootstrap(settings)
    try:
        server = bootstrap.start()
    except BootstrapError as e:
        logger.error("%s (state=%s)", e, e.state.value, extra=FATAL_EXTRA)
        return 1

    def _shutdown(signum: int, _frame: Any) -> None:
        logger.info("received signal %d, stopping", signum)
        threading.Thread(target=server.stop, args=(SHUTDOWN_GRACE_SECONDS,), daemon=True).start()

    signal.signal(signal.SIGTERM, _shutdown)
    try:
        server.wait()
    except KeyboardInterrupt:
        server.stop(SHUTDOWN_GRACE_SECONDS)
        return 130
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
