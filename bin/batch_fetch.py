#!/usr/bin/env python3
"""
CWD-Dash Batch Fetch Manager

Concurrent, order-preserving paginated fetcher for ArcGIS query endpoints.

Key Design Principles:
- Bounded window: at most max_concurrent page requests in flight
- Speculative dispatch: offsets are issued ahead of completion to keep the window full
- Ordered reassembly: pages complete in any order but are emitted by ascending offset
- Contained failure: an offset that exhausts its retries fails alone

Pipeline:
    PageFetcher → BatchFetchManager (dispatch / race / settle) → drain → ProgressReporter

Author: CWD-Dash Team
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

import aiohttp


# =============================================================================
# CONSTANTS
# =============================================================================

API_BASE_URL = (
    "https://gisblue.mdc.mo.gov/arcgis/rest/services/Terrestrial/"
    "CWD_Fall_Reporting_Dashboard/MapServer/26/query"
)

DEFAULT_BATCH_SIZE = 2000
DEFAULT_MAX_CONCURRENT = 4


# =============================================================================
# ERRORS
# =============================================================================

class BatchFetchError(Exception):
    """Base class for batch fetch failures."""


class TransientError(BatchFetchError):
    """A single request failed in a way worth retrying."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FetchExhaustedError(BatchFetchError):
    """An offset failed on every attempt. Terminal for that offset only."""

    def __init__(self, offset: int, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(f"Batch at offset {offset} failed after {attempts} attempts: {last_error}")
        self.offset = offset
        self.attempts = attempts
        self.last_error = last_error


class NoDataError(BatchFetchError):
    """No records were aggregated and at least one offset failed."""

    def __init__(self, failed: set[int]):
        super().__init__(f"Failed to fetch any batches (failed offsets: {sorted(failed)})")
        self.failed = set(failed)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class FetchConfig:
    """Configuration for one paginated fetch run."""
    api_url: str = API_BASE_URL
    batch_size: int = DEFAULT_BATCH_SIZE
    max_concurrent: int = DEFAULT_MAX_CONCURRENT

    # Per-request settings
    timeout_sec: float = 30.0
    max_retries: int = 3                # Additional attempts after the first
    backoff_base_sec: float = 1.0       # Delay before retry n is base × 2^(n-1)

    # Query parameters
    where: str = "1=1"
    out_fields: str = "*"

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be positive, got {self.max_concurrent}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")


# =============================================================================
# DATA MODEL
# =============================================================================

@dataclass
class Page:
    """One fetched unit of records plus its continuation flag."""
    offset: int
    features: list[dict[str, Any]] = field(default_factory=list)
    exceeded_transfer_limit: bool = False

    def __len__(self) -> int:
        return len(self.features)


@dataclass
class FetchState:
    """
    Mutable bookkeeping for a single fetch run.

    Owned by exactly one BatchFetchManager.fetch_all() call and discarded
    when that call returns or raises.
    """
    completed: dict[int, Page] = field(default_factory=dict)
    in_flight: dict[int, asyncio.Task] = field(default_factory=dict)
    failed: set[int] = field(default_factory=set)
    next_fetch_offset: int = 0
    next_aggregate_offset: int = 0
    has_more: bool = True
    total_fetched: int = 0

    # Offset of the earliest completed page that ends the stream, once known
    end_offset: Optional[int] = None

    # Monitoring
    loaded: int = 0
    dispatched: list[int] = field(default_factory=list)
    discarded: int = 0

    @property
    def stalled(self) -> bool:
        """True once a failed offset blocks aggregation for the rest of the run."""
        return bool(self.failed)

    @property
    def can_dispatch(self) -> bool:
        if self.end_offset is not None and self.next_fetch_offset > self.end_offset:
            return False
        return self.has_more and not self.stalled


@dataclass(frozen=True)
class Progress:
    """Snapshot handed to the progress observer."""
    loaded: int
    estimated_total: int
    percent: int


ProgressCallback = Callable[[Progress], None]


class Fetcher(Protocol):
    async def fetch(self, offset: int) -> Page: ...


# =============================================================================
# PAGE FETCHER
# =============================================================================

def build_query_params(offset: int, cfg: FetchConfig) -> dict[str, str]:
    """Query string for one page of an ArcGIS MapServer layer."""
    return {
        "f": "json",
        "where": cfg.where,
        "outFields": cfg.out_fields,
        "resultOffset": str(offset),
        "resultRecordCount": str(cfg.batch_size),
    }


def parse_page(offset: int, body: Any, batch_size: int) -> Page:
    """
    Turn a decoded query response into a Page.

    An empty or missing feature list is a normal end-of-stream page.
    A short page ends the stream unless the source explicitly flags more data.
    """
    if not isinstance(body, dict):
        raise TransientError(f"Unexpected response body type: {type(body).__name__}")

    # ArcGIS reports query failures as HTTP 200 with an "error" object
    if "error" in body:
        err = body.get("error") or {}
        code = err.get("code") if isinstance(err, dict) else None
        message = err.get("message") if isinstance(err, dict) else err
        raise TransientError(f"API error {code}: {message}", status_code=code)

    raw = body.get("features") or []
    if not raw:
        return Page(offset=offset, features=[], exceeded_transfer_limit=False)

    features = [f.get("attributes", {}) if isinstance(f, dict) else {} for f in raw]
    exceeded = bool(body.get("exceededTransferLimit")) or len(features) == batch_size
    return Page(offset=offset, features=features, exceeded_transfer_limit=exceeded)


class PageFetcher:
    """
    Fetches one page per call, with timeout and exponential-backoff retries.

    Holds no per-run state; any number of fetch() calls may run concurrently
    over the same session.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        cfg: FetchConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session = session
        self.cfg = cfg
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number `attempt` (0-based)."""
        return self.cfg.backoff_base_sec * (2 ** attempt)

    async def _request(self, offset: int) -> Page:
        """Single attempt. Every failure mode surfaces as TransientError."""
        params = build_query_params(offset, self.cfg)
        try:
            async with self.session.get(
                self.cfg.api_url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.cfg.timeout_sec),
            ) as response:
                if not 200 <= response.status < 300:
                    raise TransientError(
                        f"API request failed: {response.status}",
                        status_code=response.status,
                    )
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    raise TransientError(f"Invalid JSON body: {e}", status_code=response.status)
        except asyncio.TimeoutError:
            raise TransientError("Request Timeout", status_code=408)
        except aiohttp.ClientError as e:
            raise TransientError(f"Connection Error: {e}")

        return parse_page(offset, body, self.cfg.batch_size)

    async def fetch(self, offset: int) -> Page:
        attempts = self.cfg.max_retries + 1
        last_error: Optional[TransientError] = None

        for attempt in range(attempts):
            try:
                return await self._request(offset)
            except TransientError as e:
                last_error = e
                if attempt < attempts - 1:
                    delay = self.backoff_delay(attempt)
                    print(f"[Fetch] Batch at offset {offset} failed "
                          f"(attempt {attempt + 1}/{attempts}): {e}; retrying in {delay:.1f}s")
                    await self._sleep(delay)

        print(f"[Fetch] Batch at offset {offset} failed after {attempts} attempts: {last_error}")
        raise FetchExhaustedError(offset, attempts, last_error)


# =============================================================================
# PROGRESS REPORTING
# =============================================================================

class ProgressReporter:
    """
    Derives a monotonic, saturating completion estimate.

    One instance per run. Values never decrease between calls even though
    total_fetched can run ahead of the aggregated count.
    """

    def __init__(self, observer: Optional[ProgressCallback] = None):
        self.observer = observer
        self._last: Optional[Progress] = None
        self._final: Optional[Progress] = None

    def report(self, state: FetchState) -> Progress:
        # Frozen once the stream has ended
        if self._final is not None:
            if self.observer is not None:
                self.observer(self._final)
            return self._final

        loaded = state.loaded
        estimated_total = state.total_fetched

        if not state.has_more:
            percent = 100
        elif estimated_total <= 0:
            percent = 0
        else:
            percent = min(round(loaded / estimated_total * 100), 99)

        if self._last is not None:
            loaded = max(loaded, self._last.loaded)
            estimated_total = max(estimated_total, self._last.estimated_total)
            percent = max(percent, self._last.percent)

        progress = Progress(loaded=loaded, estimated_total=estimated_total, percent=percent)
        self._last = progress
        if not state.has_more:
            self._final = progress

        if self.observer is not None:
            self.observer(progress)
        return progress


# =============================================================================
# BATCH SCHEDULER
# =============================================================================

class BatchFetchManager:
    """
    Drives a full multi-page fetch to completion.

    Loop:
        1. Fill the window: dispatch next_fetch_offset while slots are free
        2. Race: suspend until at least one in-flight fetch settles
        3. Settle: failures → failed, successes → completed
        4. Drain: aggregate completed pages contiguous from next_aggregate_offset
        5. Report progress

    A failed offset is a permanent hole: no higher offset is aggregated after
    it, so dispatching stops once any offset has failed.
    """

    def __init__(self, fetcher: Fetcher, batch_size: int = DEFAULT_BATCH_SIZE,
                 max_concurrent: int = DEFAULT_MAX_CONCURRENT):
        if batch_size < 1 or max_concurrent < 1:
            raise ValueError("batch_size and max_concurrent must be positive")
        self.fetcher = fetcher
        self.batch_size = batch_size
        self.max_concurrent = max_concurrent
        # Most recent run, kept for inspection only
        self.state: Optional[FetchState] = None

    @classmethod
    def from_config(cls, session: aiohttp.ClientSession, cfg: FetchConfig,
                    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> "BatchFetchManager":
        return cls(PageFetcher(session, cfg, sleep=sleep), cfg.batch_size, cfg.max_concurrent)

    def _dispatch(self, state: FetchState) -> None:
        while state.can_dispatch and len(state.in_flight) < self.max_concurrent:
            offset = state.next_fetch_offset
            print(f"[Fetch] Starting fetch for offset {offset} "
                  f"({len(state.in_flight) + 1}/{self.max_concurrent} concurrent)")
            state.in_flight[offset] = asyncio.create_task(self.fetcher.fetch(offset))
            state.dispatched.append(offset)
            state.next_fetch_offset += self.batch_size

    def _settle(self, state: FetchState, done: set[asyncio.Task]) -> None:
        settled = [offset for offset, task in state.in_flight.items() if task in done]
        for offset in settled:
            task = state.in_flight.pop(offset)
            exc = task.exception()
            if exc is not None:
                if state.end_offset is not None and offset > state.end_offset:
                    print(f"[Fetch] Ignoring failure past end of data at offset {offset}: {exc}")
                    continue
                state.failed.add(offset)
                print(f"[Fetch] ✗ Failed to fetch batch at offset {offset}: {exc}")
                continue

            page: Page = task.result()
            state.completed[offset] = page
            if not page.exceeded_transfer_limit and (state.end_offset is None or offset < state.end_offset):
                self._mark_end(state, offset)
            elif state.end_offset is None or offset <= state.end_offset:
                state.total_fetched += len(page)
            print(f"[Fetch] ✓ Fetched {len(page)} records at offset {offset} "
                  f"(total: {state.total_fetched})")

    def _mark_end(self, state: FetchState, offset: int) -> None:
        """Record a newly known end; pages and failures past it stop counting."""
        state.end_offset = offset
        state.total_fetched = state.loaded + sum(
            len(p) for o, p in state.completed.items() if o <= offset
        )
        past_end = {o for o in state.failed if o > offset}
        if past_end:
            print(f"[Fetch] Ignoring failures past end of data at offsets {sorted(past_end)}")
            state.failed -= past_end

    def _drain(self, state: FetchState, output: list[dict[str, Any]]) -> None:
        while state.has_more and state.next_aggregate_offset in state.completed:
            page = state.completed.pop(state.next_aggregate_offset)
            output.extend(page.features)
            state.loaded += len(page)

            if not page.exceeded_transfer_limit:
                state.has_more = False
                print(f"[Fetch] → Reached end of data at offset {state.next_aggregate_offset}")

            state.next_aggregate_offset += self.batch_size

    async def _cancel_in_flight(self, state: FetchState) -> None:
        tasks = list(state.in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        state.in_flight.clear()

    async def fetch_all(self, on_progress: Optional[ProgressCallback] = None) -> list[dict[str, Any]]:
        """
        Fetch every page and return the records in ascending offset order.

        Raises NoDataError if nothing was aggregated and some offset failed.
        Partial results are returned with a warning.
        """
        state = FetchState()
        self.state = state
        reporter = ProgressReporter(on_progress)
        output: list[dict[str, Any]] = []

        print(f"[Fetch] Starting parallel batch fetching "
              f"(batch_size={self.batch_size}, max_concurrent={self.max_concurrent})")

        try:
            while state.can_dispatch or state.in_flight:
                self._dispatch(state)

                if state.in_flight:
                    done, _ = await asyncio.wait(
                        state.in_flight.values(),
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    self._settle(state, done)

                self._drain(state, output)
                reporter.report(state)
        finally:
            await self._cancel_in_flight(state)

        if state.failed:
            state.discarded = sum(len(p) for p in state.completed.values())
        state.completed.clear()

        if not output and state.failed:
            raise NoDataError(state.failed)

        if state.failed:
            print(f"[Warning] Completed with {len(state.failed)} failed batches "
                  f"(gap at offsets {sorted(state.failed)}). Returning {len(output)} records"
                  + (f"; discarded {state.discarded} records beyond the gap." if state.discarded else "."))
        else:
            print(f"[Fetch] ✓ Successfully fetched all {len(output)} records using parallel batching")

        return output
