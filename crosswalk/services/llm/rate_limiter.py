"""Sliding-window rate limiter for the inference service.

Tracks ``(timestamp, tokens)`` entries over the trailing window against
two independent caps: requests per window and tokens per window. It is
constructed explicitly by the composition root and handed to the client
that needs it; there is no process-wide instance.

Usage:
    limiter = RateLimiter(requests_per_minute=60, tokens_per_minute=90000)
    reservation = await limiter.wait_if_needed(estimated_tokens=1200)
    ...  # perform the call
    limiter.record_request(actual_tokens, reservation)
"""
import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional

import structlog

logger = structlog.get_logger(__name__)

WINDOW_SECONDS = 60.0


@dataclass
class RateLimitInfo:
    """Budget snapshot, recomputed on every call."""
    requests_remaining: int
    tokens_remaining: int
    reset_in_seconds: float
    is_limited: bool


@dataclass(eq=False)
class WindowEntry:
    """One request counted against the window.

    Returned by ``wait_if_needed`` as a reservation so that the true
    token usage can replace the estimate once the call completes.
    """
    timestamp: float
    tokens: int


class RateLimiter:
    """Request/token budget over a trailing time window.

    Concurrent callers serialize on an asyncio lock around the window
    state. Over-budget callers sleep until the oldest entry leaves the
    window and then re-check; nobody is ever dropped.

    Attributes:
        requests_per_minute: Request cap per window
        tokens_per_minute: Token cap per window
        window_seconds: Window length (60 seconds unless testing)
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        tokens_per_minute: int = 90000,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if requests_per_minute < 1 or tokens_per_minute < 1:
            raise ValueError("rate limits must be positive")
        self.requests_per_minute = requests_per_minute
        self.tokens_per_minute = tokens_per_minute
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._entries: Deque[WindowEntry] = deque()
        self._lock = asyncio.Lock()
        self._log = logger.bind(
            component="RateLimiter",
            requests_per_minute=requests_per_minute,
            tokens_per_minute=tokens_per_minute,
        )

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._entries and self._entries[0].timestamp <= cutoff:
            self._entries.popleft()

    def _snapshot(self, now: float, estimated_tokens: int) -> RateLimitInfo:
        self._prune(now)
        used_requests = len(self._entries)
        used_tokens = sum(entry.tokens for entry in self._entries)

        over_requests = used_requests >= self.requests_per_minute
        # A single oversized request is allowed through an empty window
        over_tokens = bool(self._entries) and used_tokens + estimated_tokens > self.tokens_per_minute

        if self._entries:
            reset_in = max(0.0, self._entries[0].timestamp + self.window_seconds - now)
        else:
            reset_in = 0.0

        return RateLimitInfo(
            requests_remaining=max(0, self.requests_per_minute - used_requests),
            tokens_remaining=max(0, self.tokens_per_minute - used_tokens),
            reset_in_seconds=reset_in,
            is_limited=over_requests or over_tokens,
        )

    def can_make_request(self, estimated_tokens: int = 1000) -> RateLimitInfo:
        """Report whether a call of ``estimated_tokens`` fits the budget now."""
        return self._snapshot(self._clock(), estimated_tokens)

    async def wait_if_needed(self, estimated_tokens: int = 1000) -> WindowEntry:
        """Block cooperatively until the call fits, then reserve it.

        Args:
            estimated_tokens: Approximate tokens the call will consume

        Returns:
            The reservation entry to pass to ``record_request``
        """
        waited = 0.0
        while True:
            async with self._lock:
                now = self._clock()
                info = self._snapshot(now, estimated_tokens)
                if not info.is_limited:
                    entry = WindowEntry(timestamp=now, tokens=estimated_tokens)
                    self._entries.append(entry)
                    if waited:
                        self._log.info("rate_limit_wait_finished", waited_seconds=round(waited, 3))
                    return entry
                delay = info.reset_in_seconds

            self._log.warning(
                "rate_limit_hit",
                wait_seconds=round(delay, 3),
                requests_remaining=info.requests_remaining,
                tokens_remaining=info.tokens_remaining,
                estimated_tokens=estimated_tokens,
            )
            # Entries expire strictly after the boundary; never spin at zero
            delay = max(delay, 0.001)
            await self._sleep(delay)
            waited += delay

    def record_request(self, actual_tokens: int, reservation: Optional[WindowEntry] = None) -> None:
        """Record true usage once known.

        Replaces the estimate on ``reservation`` if it is still inside
        the window; without a reservation a new entry is appended.
        """
        actual_tokens = max(0, int(actual_tokens))
        if reservation is not None:
            if any(entry is reservation for entry in self._entries):
                reservation.tokens = actual_tokens
            return
        self._entries.append(WindowEntry(timestamp=self._clock(), tokens=actual_tokens))

    def reset(self) -> None:
        """Forget all recorded usage."""
        self._entries.clear()
