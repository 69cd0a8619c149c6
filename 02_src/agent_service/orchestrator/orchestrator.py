"""RunOrchestrator: drives the model and tool loop for each run."""

import asyncio
import json
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Protocol

from ..dedup import IDedupCache, fingerprint
from ..errors import (
    AgentServiceError,
    ModelGatewayError,
    StepBudgetExceeded,
    ToolError,
    ToolRoutingError,
    ValidationError,
)
from ..event_bus import IEventBus
from ..llm import ILLMProvider
from ..logging_config import get_logger
from ..models import (
    ChatMessage,
    Completion,
    EventKind,
    Run,
    RunRequest,
    RunStatus,
    ToolCall,
    ToolResult,
)
from ..profiles import Profile, ProfileRegistry
from ..storage import IAuditStore
from ..tools import IToolBroker

logger = get_logger(__name__)

PLAN_STEPS = ["Analyzing request", "Calling tools", "Generating response"]


@dataclass(frozen=True)
class SubmitResult:
    """Handle returned to the caller before any model call is made."""

    run_id: str
    events_url: str
    status: str = "created"
    duplicate: bool = False


class IRunOrchestrator(Protocol):
    """Accepts requests and runs them in the background."""

    async def submit(self, request: RunRequest) -> SubmitResult:
        """Create a run (or find its duplicate) and start processing."""
        ...

    def get_run(self, run_id: str) -> Run | None:
        """In-memory view of a run still being processed."""
        ...

    async def stop(self) -> None:
        """Cancel in-flight runs."""
        ...


class RunOrchestrator:
    """Owns one background task per run.

    Every run ends with exactly one terminal event (``done`` or ``error``)
    and exactly two audit writes (create, final update).
    """

    def __init__(
        self,
        model_gateway: ILLMProvider,
        tool_broker: IToolBroker,
        event_bus: IEventBus,
        dedup_cache: IDedupCache,
        audit_store: IAuditStore,
        profiles: ProfileRegistry | None = None,
        public_base_url: str = "",
        stream_tokens: bool = True,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._gateway = model_gateway
        self._broker = tool_broker
        self._bus = event_bus
        self._dedup = dedup_cache
        self._audit = audit_store
        self._profiles = profiles or ProfileRegistry()
        self._public_base_url = public_base_url.rstrip("/")
        self._stream_tokens = stream_tokens
        self._id_factory = id_factory
        self._runs: dict[str, Run] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def events_url(self, run_id: str) -> str:
        return f"{self._public_base_url}/runs/{run_id}/events"

    def get_run(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    @property
    def active_runs(self) -> int:
        return len(self._tasks)

    async def submit(self, request: RunRequest) -> SubmitResult:
        """Create a run (or find its duplicate) and start processing.

        Returns before the first model call; the run's event channel is
        already open and buffering.

        Raises:
            ValidationError: Blank prompt or unknown profile
        """
        if not request.prompt or not request.prompt.strip():
            raise ValidationError("Prompt must not be blank")
        profile = self._profiles.get(request.profile_id)

        run_id = self._id_factory()
        key = fingerprint(request)
        claim = self._dedup.try_claim(key, run_id)
        if not claim.claimed:
            return SubmitResult(
                run_id=claim.existing_run_id,
                events_url=self.events_url(claim.existing_run_id),
                duplicate=True,
            )

        run = Run(
            id=run_id,
            prompt=request.prompt,
            requester=request.requester,
            context=request.context,
            profile_id=profile.id,
        )
        try:
            run.transition(RunStatus.RUNNING)
            run.record_id = await self._audit.create_run(run)
            self._bus.open(run_id)
            self._runs[run_id] = run
            task = asyncio.create_task(self._process(run, profile, key), name=f"run-{run_id}")
        except Exception:
            self._dedup.release(key)
            self._runs.pop(run_id, None)
            raise

        self._tasks[run_id] = task
        task.add_done_callback(lambda _task: self._tasks.pop(run_id, None))

        logger.info(
            "Run created",
            extra={
                "context": {
                    "run_id": run_id,
                    "profile_id": profile.id,
                    "requester": f"{request.requester.provider}:{request.requester.id}",
                    "channel_id": request.context.channel_id,
                }
            },
        )
        return SubmitResult(run_id=run_id, events_url=self.events_url(run_id))

    async def stop(self) -> None:
        """Cancel in-flight runs and wait for them to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled in-flight runs", extra={"context": {"count": len(tasks)}})

    # Run processing

    async def _process(self, run: Run, profile: Profile, fingerprint_key: str) -> None:
        started = time.monotonic()
        try:
            await self._run_loop(run, profile)
        except asyncio.CancelledError:
            await self._fail(run, "run_cancelled", "Run cancelled before completion")
            await self._finalize(run, started, fingerprint_key)
            raise
        except AgentServiceError as e:
            await self._fail(run, e.code, e.message)
        except Exception as e:
            logger.error(
                "Run failed unexpectedly: %s",
                e,
                exc_info=True,
                extra={"context": {"run_id": run.id}},
            )
            await self._fail(run, AgentServiceError.code, f"Unexpected error: {e}")
        await self._finalize(run, started, fingerprint_key)

    async def _run_loop(self, run: Run, profile: Profile) -> None:
        messages = [
            ChatMessage(role="system", content=profile.system_prompt),
            ChatMessage(role="user", content=run.prompt),
        ]
        tools = self._broker.function_schemas(profile.tool_allowlist)

        await self._bus.publish(
            run.id,
            EventKind.PLAN,
            {
                "steps": PLAN_STEPS,
                "profile": profile.id,
                "tool_count": len(tools),
                "max_rounds": profile.max_rounds,
            },
        )

        for round_number in range(1, profile.max_rounds + 1):
            completion = await self._complete(messages, tools, profile)

            if not completion.tool_calls:
                await self._finish(run, completion.content)
                return

            for call in completion.tool_calls:
                await self._bus.publish(
                    run.id,
                    EventKind.TOOL_CALL,
                    {
                        "id": call.id,
                        "name": call.name,
                        "arguments": call.arguments,
                        "round": round_number,
                    },
                )
            messages.append(
                ChatMessage(
                    role="assistant",
                    content=completion.content,
                    tool_calls=list(completion.tool_calls),
                )
            )

            # Run concurrently, append in call order
            results = await asyncio.gather(
                *(self._execute_tool(run, call) for call in completion.tool_calls)
            )
            for call, (result, routed) in zip(completion.tool_calls, results):
                if routed:
                    run.tools_used.append(call.name)
                messages.append(
                    ChatMessage(
                        role="tool",
                        content=_tool_message_content(result),
                        tool_call_id=call.id,
                        is_error=result.is_error,
                    )
                )

        raise StepBudgetExceeded(
            f"Step budget exceeded: no final answer after {profile.max_rounds} rounds"
        )

    async def _complete(
        self,
        messages: list[ChatMessage],
        tools: list[dict],
        profile: Profile,
    ) -> Completion:
        try:
            return await self._gateway.complete(
                messages,
                tools=tools or None,
                temperature=profile.temperature,
            )
        except ModelGatewayError:
            raise
        except Exception as e:
            raise ModelGatewayError(f"LLM API error: {e}", e) from e

    async def _execute_tool(self, run: Run, call: ToolCall) -> tuple[ToolResult, bool]:
        """Invoke one tool; failures become error results for the model.

        The flag is False when the name did not route to a provider tool.
        """
        try:
            return await self._broker.invoke(call.name, call.arguments), True
        except ToolError as e:
            logger.warning(
                "Tool call failed: %s",
                e.message,
                extra={"context": {"run_id": run.id, "tool": call.name, "code": e.code}},
            )
            return ToolResult.error(f"{e.code}: {e.message}"), not isinstance(e, ToolRoutingError)
        except Exception as e:
            logger.error(
                "Tool call raised unexpectedly: %s",
                e,
                exc_info=True,
                extra={"context": {"run_id": run.id, "tool": call.name}},
            )
            return ToolResult.error(f"tool_invocation_error: {e}"), True

    async def _finish(self, run: Run, content: str) -> None:
        if self._stream_tokens and content:
            for word in content.split(" "):
                await self._bus.publish(run.id, EventKind.TOKEN, {"text": word + " "})

        await self._bus.publish(
            run.id, EventKind.MESSAGE, {"role": "assistant", "content": content}
        )
        run.final_message = content
        run.transition(RunStatus.OK)
        await self._bus.publish(run.id, EventKind.DONE, {"status": RunStatus.OK.value})

    async def _fail(self, run: Run, code: str, message: str) -> None:
        run.error = message
        run.error_code = code
        if not run.status.is_terminal:
            run.transition(RunStatus.ERROR)
        logger.error(
            "Run failed: %s",
            message,
            extra={"context": {"run_id": run.id, "code": code}},
        )
        await self._bus.publish(run.id, EventKind.ERROR, {"code": code, "message": message})

    async def _finalize(self, run: Run, started: float, fingerprint_key: str) -> None:
        """Release the run's claims, then write the final audit record."""
        run.latency_ms = int((time.monotonic() - started) * 1000)
        self._dedup.release(fingerprint_key)
        self._runs.pop(run.id, None)

        fields = {
            "status": run.status,
            "tools_used": run.tools_used,
            "latency_ms": run.latency_ms,
        }
        if run.status is RunStatus.OK:
            fields["final_message"] = run.final_message
        else:
            fields["error"] = run.error
            fields["error_code"] = run.error_code

        try:
            await self._audit.update_run(run.record_id, **fields)
        except Exception as e:
            logger.error(
                "Failed to update audit record: %s",
                e,
                exc_info=True,
                extra={"context": {"run_id": run.id, "record_id": run.record_id}},
            )

        logger.info(
            "Run finished",
            extra={
                "context": {
                    "run_id": run.id,
                    "status": run.status.value,
                    "latency_ms": run.latency_ms,
                    "tools_used": len(run.tools_used),
                }
            },
        )


def _tool_message_content(result: ToolResult) -> str:
    text = result.text
    if text:
        return text
    return json.dumps(result.content)
