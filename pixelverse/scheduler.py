"""
Decision scheduler: when to think, how hard, and how many at once.

Every generation call in the world goes through one scheduler instance:

1. Stimulus gate: ``should_think`` skips agents with nothing to react to
   (the main cost control)
2. Priority: ``classify_priority`` maps a named trigger to low/medium/high/critical
3. Tier: ``select_tier`` maps priority to the cheap or expensive model
4. Dispatch: ``think`` queues the request FIFO behind a global concurrency cap

Requests move ``queued -> dispatched -> completed | failed``. A dispatched
request calls the generation collaborator exactly once. There is no retry:
failures (and timeouts) surface as :class:`GenerationError`.
"""

from __future__ import annotations

import asyncio
import itertools
import random
import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Optional, Set

from .config import Config
from .generation import Generator
from .logging_utils import debug_enabled, log_error, log_llm
from .schemas import ModelTier, Priority, ThinkingRequest, ThinkingResult, ThinkingStatus

TRIGGER_PRIORITY: Dict[str, Priority] = {
    "user_chat": Priority.HIGH,
    "first_meeting": Priority.HIGH,
    "evolution": Priority.CRITICAL,
    "reflection": Priority.CRITICAL,
    "social_chat": Priority.MEDIUM,
    "autonomous": Priority.MEDIUM,
    "message_reply": Priority.MEDIUM,
}

# Low and medium share the cheap tier
PRIORITY_TIER: Dict[Priority, ModelTier] = {
    Priority.CRITICAL: ModelTier.EXPENSIVE,
    Priority.HIGH: ModelTier.EXPENSIVE,
    Priority.MEDIUM: ModelTier.CHEAP,
    Priority.LOW: ModelTier.CHEAP,
}


class GenerationError(Exception):
    """Raised when a dispatched generation call fails or times out.

    Aborts only the tick of the agent that asked; the agent stays eligible
    for the stimulus gate on the next interval.
    """

    def __init__(
        self,
        *,
        agent_id: str,
        request_id: int,
        reason: str,
        underlying: Optional[BaseException] = None,
    ) -> None:
        self.agent_id = agent_id
        self.request_id = request_id
        self.reason = reason
        self.underlying = underlying
        message = (
            f"Generation failed for agent '{agent_id}' (request {request_id}): {reason}\n\n"
            "Remediation tips:\n"
            "  - Verify LLM configuration (LLM_PROVIDER, LLM_MODEL_CHEAP/EXPENSIVE, API key)\n"
            "  - Raise LLM_TIMEOUT_SECONDS if calls are slow, or set it to 0 to disable\n"
            "  - Enable DEBUG_LLM=true to inspect prompts/responses"
        )
        super().__init__(message)


@dataclass
class _Pending:
    request_id: int
    request: ThinkingRequest
    future: "asyncio.Future[ThinkingResult]"
    status: ThinkingStatus = ThinkingStatus.QUEUED


class DecisionScheduler:
    """Stimulus gate, priority/tier mapping and a bounded FIFO dispatcher."""

    def __init__(
        self,
        generator: Generator,
        *,
        capacity: Optional[int] = None,
        timeout: Optional[float] = None,
        tier_models: Optional[Dict[ModelTier, str]] = None,
    ):
        self.generator = generator
        self.capacity = capacity if capacity is not None else Config.MAX_CONCURRENT_THINKING
        if self.capacity < 1:
            raise ValueError("Scheduler capacity must be at least 1")
        if timeout is None:
            timeout = Config.LLM_TIMEOUT_SECONDS
        # 0 (or negative) disables the per-request timeout
        self.timeout: Optional[float] = timeout if timeout and timeout > 0 else None
        self.tier_models = tier_models or {
            ModelTier.CHEAP: Config.LLM_MODEL_CHEAP,
            ModelTier.EXPENSIVE: Config.LLM_MODEL_EXPENSIVE,
        }

        self._queue: Deque[_Pending] = deque()
        self._active = 0
        self._ids = itertools.count(1)
        self._tasks: Set[asyncio.Task[None]] = set()
        self.totals: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Gate, priority, tier
    # ------------------------------------------------------------------

    @staticmethod
    def should_think(
        unread_count: int,
        occupancy_changed: bool,
        has_new_event: bool,
        low_stats: bool,
        random_chance: float,
        rng: Optional[random.Random] = None,
    ) -> bool:
        """True when any stimulus is present, or a random draw succeeds.

        The draw is only taken when no deterministic stimulus fired.
        """
        if unread_count > 0 or occupancy_changed or has_new_event or low_stats:
            return True
        return (rng or random).random() < random_chance

    @staticmethod
    def classify_priority(trigger: str) -> Priority:
        return TRIGGER_PRIORITY.get(trigger, Priority.LOW)

    @staticmethod
    def select_tier(priority: Priority) -> ModelTier:
        return PRIORITY_TIER[priority]

    def model_for(self, request: ThinkingRequest) -> str:
        if request.model:
            return request.model
        return self.tier_models[self.select_tier(request.priority)]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def think(self, request: ThinkingRequest) -> ThinkingResult:
        """Queue a request and wait for its result.

        Raises:
            GenerationError: The collaborator raised or the call timed out.
        """
        loop = asyncio.get_running_loop()
        pending = _Pending(
            request_id=next(self._ids),
            request=request,
            future=loop.create_future(),
        )
        self._queue.append(pending)
        self.totals[ThinkingStatus.QUEUED.value] += 1
        self._pump()
        return await pending.future

    def _pump(self) -> None:
        while self._queue and self._active < self.capacity:
            pending = self._queue.popleft()
            if pending.future.done():
                # Caller gave up while queued
                continue
            self._active += 1
            pending.status = ThinkingStatus.DISPATCHED
            self.totals[ThinkingStatus.DISPATCHED.value] += 1
            task = asyncio.create_task(self._dispatch(pending))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _dispatch(self, pending: _Pending) -> None:
        request = pending.request
        tier = self.select_tier(request.priority)
        model = self.model_for(request)
        log_llm(
            f"{request.agent_id} thinking [{request.trigger or 'unspecified'}] "
            f"priority={request.priority.value} tier={tier.value} model={model}"
        )
        if debug_enabled("DEBUG_LLM"):
            log_llm(f"context for {request.agent_id}:\n{request.context}")

        started = time.perf_counter()
        try:
            call = self.generator.generate(
                request.context, tier, model=model, structured=request.structured
            )
            if self.timeout is not None:
                text = await asyncio.wait_for(call, timeout=self.timeout)
            else:
                text = await call
        except asyncio.TimeoutError as exc:
            self._fail(pending, f"timed out after {self.timeout:g}s", exc)
        except asyncio.CancelledError:
            self._fail(pending, "cancelled", None)
            raise
        except Exception as exc:
            self._fail(pending, f"{type(exc).__name__}: {exc}", exc)
        else:
            pending.status = ThinkingStatus.COMPLETED
            self.totals[ThinkingStatus.COMPLETED.value] += 1
            if not pending.future.done():
                pending.future.set_result(
                    ThinkingResult(
                        request_id=pending.request_id,
                        agent_id=request.agent_id,
                        text=text or "",
                        tier=tier,
                        model=model,
                        duration_ms=int((time.perf_counter() - started) * 1000),
                    )
                )
        finally:
            self._active -= 1
            self._pump()

    def _fail(self, pending: _Pending, reason: str, exc: Optional[BaseException]) -> None:
        pending.status = ThinkingStatus.FAILED
        self.totals[ThinkingStatus.FAILED.value] += 1
        log_error(f"generation failed for {pending.request.agent_id}: {reason}")
        if not pending.future.done():
            error = GenerationError(
                agent_id=pending.request.agent_id,
                request_id=pending.request_id,
                reason=reason,
                underlying=exc,
            )
            if exc is not None:
                error.__cause__ = exc
            pending.future.set_exception(error)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return sum(1 for p in self._queue if not p.future.done())

    def stats(self) -> Dict[str, Any]:
        return {
            "active": self._active,
            "queued": self.queued,
            "capacity": self.capacity,
            "totals": dict(self.totals),
        }
