"""
Docflow - Signature expiry sweep.

Stateless job that moves lapsed pending signature requests to ``expired``.
Each request goes through the lifecycle controller, so a request signed while
the sweep is running keeps its signature: the version check fails and the
request is looked at again on the next pass.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from .exceptions import AlreadyResolvedError, ConcurrentModificationError, InvalidTransitionError
from .models import to_naive_utc
from .signatures import compute_is_expired

if TYPE_CHECKING:
    from .lifecycle import LifecycleController

logger = logging.getLogger("docflow.sweep")


@dataclass
class SweepReport:
    """What a single sweep pass did."""

    examined: int = 0
    expired: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"examined": self.examined, "expired": self.expired, "skipped": self.skipped}


async def run_expiry_sweep(
    controller: "LifecycleController", now: Optional[datetime] = None
) -> SweepReport:
    """Expire every pending request whose expiry has passed at ``now``."""
    now = to_naive_utc(now) or controller.clock()
    report = SweepReport()

    for request in controller.pending_signature_requests():
        report.examined += 1
        if not compute_is_expired(request, now):
            continue
        try:
            expired = await controller.expire_signature_request(request.id, now=now)
        except (ConcurrentModificationError, AlreadyResolvedError, InvalidTransitionError) as e:
            logger.warning(f"Skipped expiring signature request {request.id}: {e.message}")
            report.skipped += 1
            continue
        if expired is None:
            report.skipped += 1
        else:
            report.expired += 1

    if report.expired or report.skipped:
        logger.info(
            f"Expiry sweep examined {report.examined}, expired {report.expired}, "
            f"skipped {report.skipped}"
        )
    return report


class ExpirySweeper:
    """Runs the expiry sweep every ``interval`` seconds on the event loop."""

    def __init__(self, controller: "LifecycleController", interval: float):
        self.controller = controller
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[SweepReport] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.last_report = await run_expiry_sweep(self.controller)
            except Exception as e:
                # A failed pass must not stop later passes
                logger.error(f"Expiry sweep failed: {e}")

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Starting expiry sweep every {self.interval}s")
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
