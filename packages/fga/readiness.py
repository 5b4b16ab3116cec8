"""Readiness polling.

Blocks the caller until a datastore or engine reports ready, a hard error
occurs, or the deadline passes. Only soft "not ready yet" reports are
retried.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from packages.fga.errors import BackendConnectionError, EmbeddedFGAError, ReadinessTimeoutError
from packages.fga.models import ReadinessReport

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 1.0

Probe = Callable[[], ReadinessReport]


def wait_until_ready(
    probe: Probe,
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    *,
    target: str = "datastore",
    on_not_ready: Callable[[ReadinessReport], object] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ReadinessReport:
    """Poll ``probe`` until it reports ready.

    The probe is called immediately. Each not-ready report is passed to
    ``on_not_ready`` (the migration hook) before sleeping ``poll_interval``
    and probing again. When the hook returns a truthy value a migration
    ran, and the probe is repeated at once, even past the deadline.

    Args:
        probe: Returns a ReadinessReport, raises on hard failure
        timeout: Seconds to wait overall
        poll_interval: Seconds between probes
        target: Name used in logs and errors
        on_not_ready: Called with every not-ready report; returns True
            after running a migration

    Returns:
        The ready report

    Raises:
        BackendConnectionError: If the probe raised
        ReadinessTimeoutError: If the deadline passed while not ready
    """
    deadline = clock() + timeout
    attempts = 0
    reprobe = False

    while True:
        attempts += 1
        try:
            report = probe()
        except EmbeddedFGAError:
            raise
        except Exception as e:
            raise BackendConnectionError(target, str(e)) from e

        if report.is_ready:
            logger.info("%s ready after %d attempt(s)", target.capitalize(), attempts)
            return report

        logger.info("Waiting for %s to be ready: %s", target, report.message or report.reason.value)
        migrated = bool(on_not_ready(report)) if on_not_ready is not None else False

        # One immediate re-probe per migration
        if migrated and not reprobe:
            reprobe = True
            continue
        reprobe = False

        remaining = deadline - clock()
        if remaining <= 0:
            raise ReadinessTimeoutError(target, timeout, report.message)
        sleep(min(poll_interval, remaining))
