"""PULSE: Sync Dispatch.

The manual trigger does not run the sync itself: it fires a request at the
cron endpoint and returns an acknowledgement straight away. Delivery is
at-most-once and nothing reports completion back to the caller; the
/sync-status endpoint is where progress shows up.
"""

import asyncio
from datetime import datetime
from typing import List, Optional, Set
from uuid import uuid4

import httpx
from pydantic import BaseModel

from app.config import settings
from app.core.clock import utcnow
from app.core.logging import get_logger

logger = get_logger("services.dispatch")


class DispatchAck(BaseModel):
    """Handle returned to the caller the moment a sync is dispatched."""

    dispatch_id: str
    company_ids: List[str] = []
    force: bool = False
    dispatched_at: datetime


class SyncDispatcher:
    """Fires background requests at GET /sync-analytics."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        secret: Optional[str] = None,
        timeout: float = 300.0,
    ):
        self.base_url = (base_url or settings.app_base_url).rstrip("/")
        self.secret = secret if secret is not None else settings.cron_secret
        self.timeout = timeout
        # Strong references so the loop does not drop running tasks
        self._in_flight: Set[asyncio.Task] = set()

    def _params(self, company_ids: List[str], force: bool) -> dict:
        params = {"secret": self.secret}
        if company_ids:
            params["companyIds"] = ",".join(company_ids)
        if force:
            params["force"] = "true"
        return params

    async def _send(self, ack: DispatchAck) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(
                    f"{self.base_url}/sync-analytics",
                    params=self._params(ack.company_ids, ack.force),
                )
            logger.info(
                f"Dispatched sync {ack.dispatch_id} finished with {resp.status_code}",
                extra={"status_code": resp.status_code},
            )
        except Exception as e:
            logger.error(f"Background sync request {ack.dispatch_id} failed: {e}")

    def dispatch(self, company_ids: Optional[List[str]] = None, force: bool = False) -> DispatchAck:
        """Schedule the request on the running loop and return immediately."""
        ack = DispatchAck(
            dispatch_id=str(uuid4()),
            company_ids=list(company_ids or []),
            force=force,
            dispatched_at=utcnow(),
        )
        task = asyncio.get_running_loop().create_task(self._send(ack))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return ack

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)


dispatcher = SyncDispatcher()


def get_dispatcher() -> SyncDispatcher:
    """Dependency: the process-wide dispatcher. Overridden in tests."""
    return dispatcher
