"""Tests for the HTTP API."""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from agent_service.api import create_fastapi_app
from agent_service.api.routes.runs import CreateRunRequest, format_sse, parse_last_event_id
from agent_service.app import Application
from agent_service.config import Settings
from agent_service.models import Event, EventKind
from agent_service.tools import ToolBroker, ToolDefinition
from tests.fakes import FakeConnection, ScriptedGateway, text_reply

RUN_BODY = {"prompt": "ping", "user": {"provider": "discord", "id": "user1"}}


@pytest_asyncio.fixture
async def make_client(tmp_path):
    """Start an Application with a scripted gateway and wrap it in a client."""
    started: list[tuple[Application, httpx.AsyncClient]] = []

    async def _make(gateway=None, broker=None) -> httpx.AsyncClient:
        application = Application(
            settings=Settings(
                mcp_servers_config=tmp_path / "mcp-servers.json",
                public_base_url="http://agent.test",
                terminal_grace=0.01,
                replay_grace=5.0,
                heartbeat_interval=60.0,
            ),
            db_path=":memory:",
            model_gateway=gateway or ScriptedGateway(default=text_reply("pong")),
            tool_broker=broker,
        )
        # ASGITransport does not run lifespan events
        await application.start()
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=create_fastapi_app(application)),
            base_url="http://agent.test",
        )
        started.append((application, client))
        return client

    yield _make

    for application, client in started:
        await client.aclose()
        await application.stop()


def parse_frames(body: str) -> list[dict]:
    """Split an SSE body into frames of field -> value."""
    frames = []
    for block in body.strip().split("\n\n"):
        frame: dict = {}
        for line in block.splitlines():
            field, _, value = line.partition(":")
            frame[field] = value.strip()
        frames.append(frame)
    return frames


async def read_stream(client: httpx.AsyncClient, url: str, **kwargs) -> tuple[httpx.Response, str]:
    async def _read():
        async with client.stream("GET", url, **kwargs) as response:
            body = "".join([chunk async for chunk in response.aiter_text()])
        return response, body

    return await asyncio.wait_for(_read(), timeout=5.0)


class TestCreateRun:
    """Tests for POST /runs."""

    async def test_create_run(self, make_client):
        """Test a valid submission."""
        client = await make_client()

        response = await client.post("/runs", json=RUN_BODY)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "created"
        assert data["events_url"] == f"http://agent.test/runs/{data['id']}/events"

    async def test_camel_case_fields(self, make_client):
        """Test that camelCase request fields are accepted."""
        client = await make_client()

        response = await client.post(
            "/runs",
            json={
                **RUN_BODY,
                "profileId": "research",
                "context": {"channelId": "c1", "replyToMessageId": "m1", "replyMode": "thread"},
            },
        )

        assert response.status_code == 200

    @pytest.mark.parametrize(
        "body",
        [
            {"user": {"provider": "discord", "id": "u"}},
            {**RUN_BODY, "prompt": ""},
            {**RUN_BODY, "prompt": "x" * 2001},
            {**RUN_BODY, "user": {"provider": "telegram", "id": "u"}},
            {**RUN_BODY, "user": {"provider": "web", "id": "u" * 65}},
            {**RUN_BODY, "context": {"replyMode": "broadcast"}},
        ],
    )
    async def test_invalid_body(self, make_client, body):
        """Test that schema violations are 400 validation errors."""
        client = await make_client()

        response = await client.post("/runs", json=body)

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert data["reason"]
        assert data["details"]

    async def test_blank_prompt(self, make_client):
        """Test that whitespace-only prompts are rejected."""
        client = await make_client()

        response = await client.post("/runs", json={**RUN_BODY, "prompt": "   "})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    async def test_unknown_profile(self, make_client):
        """Test that unknown profiles are rejected."""
        client = await make_client()

        response = await client.post("/runs", json={**RUN_BODY, "profile_id": "nope"})

        assert response.status_code == 400
        assert "nope" in response.json()["reason"]

    async def test_duplicate_returns_same_run(self, make_client):
        """Test that a quick resubmission gets the in-flight run."""
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()
            return text_reply("ok")

        client = await make_client(ScriptedGateway([blocked]))

        first = await client.post("/runs", json=RUN_BODY)
        second = await client.post("/runs", json=RUN_BODY)

        assert first.json()["id"] == second.json()["id"]
        gate.set()


class TestRunEvents:
    """Tests for GET /runs/{id}/events."""

    async def test_stream(self, make_client):
        """Test SSE framing and headers for a whole run."""
        client = await make_client()
        run_id = (await client.post("/runs", json=RUN_BODY)).json()["id"]

        response, body = await read_stream(client, f"/runs/{run_id}/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache, no-transform"
        assert response.headers["x-accel-buffering"] == "no"
        assert body.startswith("retry: 5000\n\n:\n\n")

        frames = [f for f in parse_frames(body) if "event" in f]
        assert [f["event"] for f in frames] == ["plan", "token", "message", "done"]
        assert [f["id"] for f in frames] == ["1", "2", "3", "4"]
        assert json.loads(frames[2]["data"]) == {"role": "assistant", "content": "pong"}

    async def test_resume_with_last_event_id(self, make_client):
        """Test that the header resumes after the given sequence."""
        client = await make_client()
        run_id = (await client.post("/runs", json=RUN_BODY)).json()["id"]
        await read_stream(client, f"/runs/{run_id}/events")

        _, body = await read_stream(
            client, f"/runs/{run_id}/events", headers={"Last-Event-ID": "2"}
        )

        frames = [f for f in parse_frames(body) if "event" in f]
        assert [f["id"] for f in frames] == ["3", "4"]

    async def test_resume_with_query_parameter(self, make_client):
        """Test the query parameter fallback for the resume marker."""
        client = await make_client()
        run_id = (await client.post("/runs", json=RUN_BODY)).json()["id"]
        await read_stream(client, f"/runs/{run_id}/events")

        _, body = await read_stream(client, f"/runs/{run_id}/events?last_event_id=3")

        frames = [f for f in parse_frames(body) if "event" in f]
        assert [f["event"] for f in frames] == ["done"]

    async def test_unknown_run(self, make_client):
        """Test that unknown runs are 404."""
        client = await make_client()

        response = await client.get("/runs/does-not-exist/events")

        assert response.status_code == 404

    async def test_subscribes_when_body_is_iterated(self, tmp_path):
        """Test that nothing attaches to the run until the body is read."""
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()
            return text_reply("ok")

        application = Application(
            settings=Settings(
                mcp_servers_config=tmp_path / "mcp-servers.json",
                heartbeat_interval=60.0,
            ),
            db_path=":memory:",
            model_gateway=ScriptedGateway([blocked]),
        )
        await application.start()
        fastapi_app = create_fastapi_app(application)
        endpoint = next(
            route.endpoint
            for route in fastapi_app.routes
            if getattr(route, "path", "") == "/runs/{run_id}/events"
        )
        result = await application.orchestrator.submit(
            CreateRunRequest.model_validate(RUN_BODY).to_run_request()
        )

        response = await endpoint(result.run_id, None, None)
        assert application.event_bus.subscriber_count(result.run_id) == 0

        body = response.body_iterator
        assert await body.__anext__() == "retry: 5000\n\n"
        assert application.event_bus.subscriber_count(result.run_id) == 1

        await body.aclose()
        assert application.event_bus.subscriber_count(result.run_id) == 0
        gate.set()
        await application.stop()


class TestRunSnapshot:
    """Tests for GET /runs/{id}."""

    async def test_in_flight_snapshot(self, make_client):
        """Test the snapshot of a running run, and 404 once it finished."""
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()
            return text_reply("ok")

        client = await make_client(ScriptedGateway([blocked]))
        run_id = (await client.post("/runs", json=RUN_BODY)).json()["id"]

        response = await client.get(f"/runs/{run_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "running"
        assert response.json()["requester"] == {"provider": "discord", "id": "user1"}

        gate.set()
        await read_stream(client, f"/runs/{run_id}/events")
        await asyncio.sleep(0.05)

        assert (await client.get(f"/runs/{run_id}")).status_code == 404


class TestTools:
    """Tests for GET /mcp/tools."""

    async def test_list_tools(self, make_client, tmp_path):
        """Test that registered tool names are listed."""
        (tmp_path / "mcp-servers.json").write_text(
            json.dumps([{"name": "filesystem", "transport": "stdio", "command": "fake-provider"}])
        )
        connection = FakeConnection(
            "filesystem",
            tools=[ToolDefinition(name="read_file"), ToolDefinition(name="list_dir")],
        )
        client = await make_client(broker=ToolBroker(connection_factory=lambda config: connection))

        response = await client.get("/mcp/tools")

        assert response.status_code == 200
        assert response.json() == {
            "tools": ["mcp__filesystem__list_dir", "mcp__filesystem__read_file"]
        }

    async def test_no_providers(self, make_client):
        """Test the empty tool list."""
        client = await make_client()

        assert (await client.get("/mcp/tools")).json() == {"tools": []}


class TestSseHelpers:
    """Tests for SSE encoding helpers."""

    def test_format_event(self):
        """Test a sequenced frame."""
        event = Event(run_id="r", sequence=7, kind=EventKind.TOKEN, payload={"text": "hi "})

        assert format_sse(event) == 'id: 7\nevent: token\ndata: {"text": "hi "}\n\n'

    def test_format_ping(self):
        """Test that pings carry no id."""
        event = Event(run_id="r", sequence=None, kind=EventKind.PING, payload={})

        assert format_sse(event) == "event: ping\ndata: {}\n\n"

    @pytest.mark.parametrize(
        "value, expected",
        [(None, None), ("", None), ("12", 12), (" 3 ", 3), ("abc", None), ("-1", None)],
    )
    def test_parse_last_event_id(self, value, expected):
        """Test resume marker parsing."""
        assert parse_last_event_id(value) == expected
