"""
Deputy Dispatcher — delegation of a task to a peer service.

A counting semaphore per (target service, task name) caps the number of
in-flight delegations. The semaphore is created on first use with the
requesting task's limit and is shared by every caller in the process.
Waiters are served in FIFO order. Failures surface as DeputyError and are
not retried here.
"""

import asyncio
from collections import defaultdict
from typing import TYPE_CHECKING, Optional

import structlog

from devicepulse.exceptions import DeputyError
from devicepulse.orchestration.context import Context
from devicepulse.orchestration.runs import RunStatus
from devicepulse.orchestration.task import DeputyRequest

if TYPE_CHECKING:
    from devicepulse.orchestration.service import ServiceDirectory

logger = structlog.get_logger(__name__)


class DeputyDispatcher:
    """Bounded-concurrency delegation to services in a ServiceDirectory."""

    def __init__(self, directory: "ServiceDirectory"):
        self._directory = directory
        self._slots: dict[tuple[str, str], asyncio.Semaphore] = {}
        self._limits: dict[tuple[str, str], int] = {}
        self._in_flight: dict[tuple[str, str], int] = defaultdict(int)

    def limit(self, target_service: str, task_name: str) -> Optional[int]:
        return self._limits.get((target_service, task_name))

    def in_flight(self, target_service: str, task_name: str) -> int:
        return self._in_flight[(target_service, task_name)]

    async def dispatch(
        self,
        request: DeputyRequest,
        ctx: Context,
        caller: Optional[str] = None,
        initial_state: Optional[str] = None,
    ) -> Context:
        """Run the peer's entry point and return its final Context."""
        key = (request.target_service, request.task_name)
        slot = self._slot(request)

        logger.debug(
            "deputy_waiting",
            target=request.target_service,
            task=request.task_name,
            in_flight=self._in_flight[key],
            limit=self._limits[key],
        )

        async with slot:
            self._in_flight[key] += 1
            try:
                peer = self._directory.get(request.target_service)
                if peer is None:
                    raise DeputyError(request.target_service, request.task_name, "unknown service")
                run = await peer.handle_deputy(
                    request.task_name,
                    ctx.clone(),
                    caller=caller,
                    initial_state=initial_state,
                )
            except DeputyError:
                raise
            except Exception as e:
                raise DeputyError(request.target_service, request.task_name, str(e)) from e
            finally:
                self._in_flight[key] -= 1

        if run.status != RunStatus.COMPLETED:
            raise DeputyError(
                request.target_service,
                request.task_name,
                run.error or f"peer run ended {run.status.value}",
            )

        logger.info(
            "deputy_completed",
            target=request.target_service,
            task=request.task_name,
            peer_run_id=run.run_id,
        )
        output = run.output()
        return output if output is not None else ctx

    def _slot(self, request: DeputyRequest) -> asyncio.Semaphore:
        key = (request.target_service, request.task_name)
        slot = self._slots.get(key)
        if slot is None:
            slot = asyncio.Semaphore(request.concurrency_limit)
            self._slots[key] = slot
            self._limits[key] = request.concurrency_limit
        elif self._limits[key] != request.concurrency_limit:
            logger.warning(
                "deputy_limit_mismatch",
                target=request.target_service,
                task=request.task_name,
                configured=self._limits[key],
                requested=request.concurrency_limit,
            )
        return slot
