"""Pending human approvals keyed by (run_id, node_id)."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()


@dataclass
class ApprovalDecision:
    """Outcome of an approval wait."""

    approved: bool
    timed_out: bool = False

    @property
    def decided_by(self) -> str:
        return "timeout" if self.timed_out else "user"


class ApprovalBroker:
    """Matches external approval decisions to suspended approval nodes.

    ``decide`` may be called from any thread; the waiting coroutine is
    resumed on its own event loop.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[tuple[str, str], asyncio.Future[bool]] = {}

    def pending(self) -> list[tuple[str, str]]:
        """Keys of approvals currently waiting for a decision."""
        with self._lock:
            return list(self._pending)

    def is_pending(self, run_id: str, node_id: str) -> bool:
        with self._lock:
            return (run_id, node_id) in self._pending

    async def wait(
        self,
        run_id: str,
        node_id: str,
        *,
        timeout_ms: int,
        default_approve: bool,
        on_pending: Callable[[], None] | None = None,
    ) -> ApprovalDecision:
        """Suspend until a decision arrives or the timeout elapses.

        Args:
            run_id: Run owning the approval node.
            node_id: The approval node.
            timeout_ms: How long to wait for a decision.
            default_approve: Decision applied when the wait times out.
            on_pending: Called once the approval is registered, before
                suspending, so a decision made from inside it is not lost.

        Returns:
            The decision, flagged when it came from the timeout default.
        """
        key = (run_id, node_id)
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        with self._lock:
            self._pending[key] = future

        try:
            if on_pending is not None:
                on_pending()
            approved = await asyncio.wait_for(future, timeout_ms / 1000)
            return ApprovalDecision(approved=approved)
        except TimeoutError:
            logger.info(
                "Approval timed out, applying default",
                run_id=run_id,
                node_id=node_id,
                approved=default_approve,
            )
            return ApprovalDecision(approved=default_approve, timed_out=True)
        finally:
            with self._lock:
                if self._pending.get(key) is future:
                    del self._pending[key]

    def decide(self, run_id: str, node_id: str, approved: bool) -> bool:
        """Deliver a decision.

        Returns:
            True if a pending approval matched; False is a silent no-op.
        """
        with self._lock:
            future = self._pending.pop((run_id, node_id), None)

        if future is None or future.done():
            return False

        future.get_loop().call_soon_threadsafe(_resolve, future, approved)
        return True

    def withdraw(self, run_id: str, node_id: str) -> bool:
        """Drop a pending approval; its waiter is cancelled.

        Returns:
            True if an approval was pending.
        """
        with self._lock:
            future = self._pending.pop((run_id, node_id), None)

        if future is None:
            return False
        future.get_loop().call_soon_threadsafe(future.cancel)
        return True

    def withdraw_run(self, run_id: str) -> int:
        """Drop every pending approval of a run.

        Returns:
            Number of approvals withdrawn.
        """
        with self._lock:
            keys = [key for key in self._pending if key[0] == run_id]
        return sum(1 for _, node_id in keys if self.withdraw(run_id, node_id))


def _resolve(future: asyncio.Future[bool], approved: bool) -> None:
    if not future.done():
        future.set_result(approved)
