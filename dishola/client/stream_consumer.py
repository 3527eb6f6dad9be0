"""
Consumer for the streaming search endpoint.
"""
import asyncio
import json
from typing import Awaitable, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from dishola.client.state_machine import SearchSession, SearchState
from dishola.search.models import SearchRequest, StreamEvent
from dishola.utils.logger import app_logger

SEARCH_TIMEOUT_SECONDS = 60.0
DEBOUNCE_SECONDS = 0.3

EventCallback = Callable[[StreamEvent], Awaitable[None]]


def parse_stream_line(line: str) -> Optional[StreamEvent]:
    """Decode one line of the stream; blank, comment or malformed lines yield None.

    ``data: {...}`` lines (server-sent-event framing) are accepted as well.
    """
    line = (line or "").strip()
    if not line or line.startswith(":") or line.startswith("event:"):
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
        if not line or line == "[DONE]":
            return None

    try:
        return StreamEvent.model_validate_json(line)
    except ValidationError as e:
        app_logger.warning(f"Skipping unreadable stream line ({e.error_count()} errors): {line[:120]}")
        return None


def build_search_params(request: SearchRequest) -> Dict[str, str]:
    params = {"lat": request.lat, "long": request.long, "sort": request.sort_by.value}
    if request.query:
        params["q"] = request.query
    else:
        params["tastes"] = ",".join(request.tastes)
    if request.address:
        params["address"] = request.address
    return params


def _error_message(status_code: int, body: bytes) -> str:
    try:
        detail = json.loads(body).get("detail")
    except (ValueError, AttributeError):
        detail = None
    if isinstance(detail, str) and detail:
        return detail
    return f"Search failed with status {status_code}"


class StreamingSearchClient:
    """Run searches against the service and fold the event stream into a SearchSession."""

    def __init__(self, base_url: str = "http://localhost:8000", client: Optional[httpx.AsyncClient] = None,
                 timeout: float = SEARCH_TIMEOUT_SECONDS, path: str = "/api/search"):
        self.base_url = base_url
        self.client = client
        self.timeout = timeout
        self.path = path

    async def search(self, request: SearchRequest, session: Optional[SearchSession] = None,
                     on_event: Optional[EventCallback] = None) -> SearchSession:
        """Stream one search to completion.

        Errors end up on the session. Cancellation returns the session to
        idle and propagates.
        """
        session = session or SearchSession()
        session.start(request.sort_by)

        try:
            async with asyncio.timeout(self.timeout):
                if self.client is not None:
                    await self._consume(self.client, request, session, on_event)
                else:
                    async with httpx.AsyncClient(base_url=self.base_url, timeout=None) as client:
                        await self._consume(client, request, session, on_event)
        except asyncio.CancelledError:
            session.reset()
            raise
        except TimeoutError:
            app_logger.warning(f"⏱️ Search timed out after {self.timeout}s")
            session.fail("Search timed out. Please try again.", kind="general")
        except httpx.HTTPError as e:
            app_logger.error(f"❌ Search request failed: {e}")
            session.fail(f"Network error: {e}")
        return session

    async def _consume(self, client: httpx.AsyncClient, request: SearchRequest,
                       session: SearchSession, on_event: Optional[EventCallback]):
        async with client.stream("GET", self.path, params=build_search_params(request)) as response:
            if response.status_code >= 400:
                body = await response.aread()
                message = _error_message(response.status_code, body)
                session.fail(message, kind="rate_limited" if response.status_code == 429 else None)
                return

            async for line in response.aiter_lines():
                event = parse_stream_line(line)
                if event is None:
                    continue
                session.apply(event)
                if on_event:
                    await on_event(event)
                if session.is_finished:
                    return

        if session.state in (SearchState.SEARCHING, SearchState.STREAMING):
            session.fail("Search ended unexpectedly")


class DebouncedSearchRunner:
    """Keep at most one search alive, starting each after a short quiet period."""

    def __init__(self, client: StreamingSearchClient, delay: float = DEBOUNCE_SECONDS):
        self.client = client
        self.delay = delay
        self.session: Optional[SearchSession] = None
        self._task: Optional[asyncio.Task] = None

    def submit(self, request: SearchRequest, on_event: Optional[EventCallback] = None) -> asyncio.Task:
        """Supersede any pending or running search with this one."""
        self.cancel()
        session = SearchSession(request.sort_by)
        self.session = session
        self._task = asyncio.create_task(self._run(request, session, on_event))
        return self._task

    def cancel(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self, request: SearchRequest, session: SearchSession,
                   on_event: Optional[EventCallback]) -> SearchSession:
        try:
            await asyncio.sleep(self.delay)
            return await self.client.search(request, session, on_event)
        except asyncio.CancelledError:
            app_logger.debug("Superseded search cancelled")
            raise

    async def wait(self) -> Optional[SearchSession]:
        """Wait for the current search and return its session (None if it was cancelled)."""
        task = self._task
        if task is None:
            return None
        # asyncio.wait leaves the task alone if this caller is cancelled
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()
