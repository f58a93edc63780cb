"""
Per-user FIFO job queue.

Each user gets a deque and at most one runner task. The runner pops jobs in
arrival order and awaits each to completion before the next, so a user never
has two jobs in flight in this process. Runners for different users are
independent. A failing job is logged and counted; the runner moves on. When
a user's deque drains, the runner exits and the user's state is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from nocrop.utils.trace import TraceContext, new_trace_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobContext:
    """Everything a job function needs; passed in by the runner."""

    user_id: str
    trace_id: str
    enqueued_at: float
    reply: Any = None
    payload: Any = None


JobFn = Callable[[JobContext], Awaitable[None]]


@dataclass
class Job:
    fn: JobFn
    context: JobContext

    @classmethod
    def create(
        cls,
        fn: JobFn,
        user_id: object,
        *,
        reply: Any = None,
        payload: Any = None,
        trace_id: Optional[str] = None,
    ) -> "Job":
        context = JobContext(
            user_id=str(user_id),
            trace_id=trace_id or new_trace_id(),
            enqueued_at=time.monotonic(),
            reply=reply,
            payload=payload,
        )
        return cls(fn=fn, context=context)


@dataclass
class UserQueueState:
    user_id: str
    jobs: Deque[Job] = field(default_factory=deque)
    running: bool = False
    task: Optional[asyncio.Task] = None


@dataclass
class QueueMetrics:
    total_received: int = 0
    total_completed: int = 0
    total_failed: int = 0


class JobQueue:
    def __init__(self):
        self._users: Dict[str, UserQueueState] = {}
        self._metrics = QueueMetrics()

    def enqueue(self, user_id: object, job: Job) -> int:
        """
        Append job to the user's queue and make sure a runner is active.

        Returns the 1-based position, counting the job currently running.
        """
        key = str(user_id)
        state = self._users.get(key)
        if state is None:
            state = UserQueueState(user_id=key)
            self._users[key] = state

        state.jobs.append(job)
        self._metrics.total_received += 1
        position = len(state.jobs) + (1 if state.running else 0)
        logger.info("[QUEUE] enqueued user_id=%s trace_id=%s position=%s", key, job.context.trace_id, position)

        if not state.running:
            state.running = True
            state.task = asyncio.create_task(self._run(state), name=f"user_queue:{key}")
        return position

    async def _run(self, state: UserQueueState) -> None:
        try:
            while state.jobs:
                job = state.jobs.popleft()
                ctx = job.context
                with TraceContext(user_id=ctx.user_id, trace_id=ctx.trace_id):
                    started = time.monotonic()
                    try:
                        await job.fn(ctx)
                    except asyncio.CancelledError:
                        raise
                    except Exception as exc:
                        self._metrics.total_failed += 1
                        logger.exception(
                            "[QUEUE] job_failed user_id=%s trace_id=%s error=%s", ctx.user_id, ctx.trace_id, exc
                        )
                    else:
                        self._metrics.total_completed += 1
                        logger.debug(
                            "[QUEUE] job_done user_id=%s trace_id=%s ms=%d",
                            ctx.user_id,
                            ctx.trace_id,
                            (time.monotonic() - started) * 1000,
                        )
        finally:
            state.running = False
            if self._users.get(state.user_id) is state:
                del self._users[state.user_id]
            logger.debug("[QUEUE] runner_exit user_id=%s", state.user_id)

    def pending(self, user_id: object) -> int:
        """Jobs waiting for this user, not counting the running one."""
        state = self._users.get(str(user_id))
        return len(state.jobs) if state else 0

    def active_users(self) -> List[str]:
        return list(self._users)

    def get_metrics(self) -> dict:
        return {
            "total_received": self._metrics.total_received,
            "total_completed": self._metrics.total_completed,
            "total_failed": self._metrics.total_failed,
            "active_users": len(self._users),
            "pending_jobs": sum(len(state.jobs) for state in self._users.values()),
        }

    async def wait_idle(self) -> None:
        """Wait until every user's queue has drained."""
        while self._users:
            tasks = [state.task for state in list(self._users.values()) if state.task is not None]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def stop(self) -> None:
        """Cancel live runners; queued jobs are dropped."""
        tasks = [state.task for state in self._users.values() if state.task is not None]
        dropped = sum(len(state.jobs) for state in self._users.values())
        for state in self._users.values():
            state.jobs.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._users.clear()
        logger.info("[QUEUE] stopped runners=%d dropped_jobs=%d", len(tasks), dropped)
