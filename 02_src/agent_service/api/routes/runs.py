"""Run submission and event stream routes."""

import json
from typing import AsyncIterator, Literal

from fastapi import APIRouter, Header, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...app import Application
from ...logging_config import get_logger
from ...models import Event, Requester, RunContext, RunRequest

logger = get_logger(__name__)

SSE_RETRY_MS = 5000

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class _CamelModel(BaseModel):
    # Accept both snake_case and camelCase field names
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserModel(_CamelModel):
    """Requester identity."""

    provider: Literal["discord", "web", "sms", "gmail"]
    id: str = Field(min_length=1, max_length=64)


class ContextModel(_CamelModel):
    """Where the request came from."""

    channel_id: str | None = Field(None, max_length=64)
    thread_id: str | None = Field(None, max_length=64)
    reply_to_message_id: str | None = Field(None, max_length=64)
    reply_mode: Literal["inline", "thread", "auto"] | None = None


class CreateRunRequest(_CamelModel):
    """Request model for creating a run."""

    prompt: str = Field(min_length=1, max_length=2000)
    profile_id: str | None = None
    user: UserModel
    context: ContextModel | None = None

    def to_run_request(self) -> RunRequest:
        context = self.context or ContextModel()
        return RunRequest(
            prompt=self.prompt,
            requester=Requester(provider=self.user.provider, id=self.user.id),
            context=RunContext(
                channel_id=context.channel_id,
                thread_id=context.thread_id,
                reply_to_message_id=context.reply_to_message_id,
                reply_mode=context.reply_mode,
            ),
            profile_id=self.profile_id,
        )


class CreateRunResponse(BaseModel):
    """Response model for a created run."""

    id: str
    status: str
    events_url: str


def format_sse(event: Event) -> str:
    """Encode one event as an SSE frame (pings carry no id)."""
    lines = []
    if event.sequence is not None:
        lines.append(f"id: {event.sequence}")
    lines.append(f"event: {event.kind.value}")
    for line in json.dumps(event.payload, default=str).splitlines() or ["{}"]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


def parse_last_event_id(value: str | None) -> int | None:
    """Resume marker from Last-Event-ID; anything unparsable means none."""
    if value is None or not value.strip():
        return None
    try:
        sequence = int(value.strip())
    except ValueError:
        return None
    return sequence if sequence >= 0 else None


def create_runs_router(app: Application) -> APIRouter:
    """Create runs router."""
    router = APIRouter(prefix="/runs", tags=["runs"])

    @router.post("", response_model=CreateRunResponse)
    async def create_run(request: CreateRunRequest) -> dict:
        """Submit a run; returns before processing starts."""
        result = await app.orchestrator.submit(request.to_run_request())
        return {"id": result.run_id, "status": result.status, "events_url": result.events_url}

    @router.get("/{run_id}/events")
    async def stream_run_events(
        run_id: str,
        last_event_id_query: str | None = Query(None, alias="last_event_id"),
        last_event_id_header: str | None = Header(None, alias="Last-Event-ID"),
    ) -> StreamingResponse:
        """Server-sent event stream for a run."""
        bus = app.event_bus
        if not bus.has_run(run_id):
            raise HTTPException(status_code=404, detail=f"Unknown run: {run_id}")

        last_seen = parse_last_event_id(last_event_id_header or last_event_id_query)

        async def event_stream() -> AsyncIterator[str]:
            # Attached on first iteration of the body
            if not bus.has_run(run_id):
                return
            subscription = bus.subscribe(run_id, last_seen_sequence=last_seen)
            try:
                yield f"retry: {SSE_RETRY_MS}\n\n"
                yield ":\n\n"
                async for event in subscription:
                    yield format_sse(event)
            finally:
                bus.unsubscribe(subscription)

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @router.get("/{run_id}")
    async def get_run(run_id: str) -> dict:
        """Snapshot of a run that is still being processed."""
        run = app.orchestrator.get_run(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail=f"Run not active: {run_id}")
        return run.to_dict()

    return router
