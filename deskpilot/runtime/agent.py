from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from .approval import ApprovalGate, denied_result_text
from .constants import MAX_RETRIES
from .context import MessagePreparer, estimate_tokens
from .host import LogLevel, TaskHost
from .ids import new_response_id
from .llm.errors import CancellationToken, is_retryable_error, user_facing_error_message
from .llm.provider import StreamProvider
from .llm.reasoning import ANSWER_RESPONSE_START_TAG, THINKING_RESPONSE_START_TAG, split_think_tags
from .llm.types import FinishReason, RawToolCall, StreamEventKind, StreamRequest, TokenUsage
from .mcp.manager import McpManager
from .models.agent_profile import AgentProfile, ContextMemoryMode
from .models.mcp_spec import McpServerConfig
from .models.messages import ContextFile, ContextMessage, MessageRole, ResponseMessage, ToolCallRecord
from .prompts import build_system_prompt
from .rate_limit import ToolCallRateLimiter
from .repair import ParsedToolCall, ToolCallRepairer
from .tools.assembler import ToolAssembler
from .tools.base import ToolContext, ToolSet
from .tools.subagents import SubagentRunner, subagent_profiles
from .tools.todo import TodoStore
from .usage import PricingProvider, RunUsage, UsageAggregator

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[AgentProfile], StreamProvider | None]

ABORTED_RESULT = "Tool execution aborted by user."
MODEL_NOT_CONFIGURED = "Selected model is not configured. Select another model and try again."
MAX_TOKENS_REACHED = (
    "The Agent has reached the maximum number of allowed tokens. "
    "To allow more tokens, go to Settings -> Agent -> Parameters and increase Max Tokens."
)


def max_iterations_reached(limit: int) -> str:
    return (
        f"The Agent has reached the maximum number of allowed iterations ({limit}). "
        "To allow more iterations, go to Settings -> Agent -> Parameters and increase Max Iterations."
    )


class NextAction(StrEnum):
    CONTINUE = "continue"
    RETRY = "retry"
    STOP = "stop"


def decide_next_action(
    finish_reason: FinishReason | None,
    *,
    last_role: MessageRole | None,
    retry_count: int,
    max_retries: int = MAX_RETRIES,
) -> NextAction:
    """
    What the loop does after a completed step.

    Unknown/other finish reasons and a `stop` right after tool results are retried while the retry
    budget lasts; `tool-calls` continues with the results appended; everything else ends the run.
    """

    if finish_reason in (None, FinishReason.UNKNOWN, FinishReason.OTHER) and retry_count < max_retries:
        return NextAction.RETRY
    if finish_reason is FinishReason.STOP and last_role is MessageRole.TOOL and retry_count < max_retries:
        return NextAction.RETRY
    if finish_reason is FinishReason.TOOL_CALLS:
        return NextAction.CONTINUE
    return NextAction.STOP


@dataclass(frozen=True, slots=True)
class AgentRunResult:
    """
    Outcome of one `Agent.run`.

    `error` holds the user-facing message of the failure that ended the run, if any. `aborted` is set
    when the run was cancelled.
    """

    messages: list[ContextMessage]
    usage: RunUsage = field(default_factory=RunUsage)
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    error: str | None = None
    aborted: bool = False


@dataclass(slots=True)
class _StepOutput:
    text: str = ""
    reasoning: str = ""
    tool_calls: list[RawToolCall] = field(default_factory=list)
    finish_reason: FinishReason | None = None
    usage: TokenUsage | None = None
    provider_metadata: dict[str, Any] | None = None
    error: BaseException | None = None


def _tool_result_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


def _run_key(host: TaskHost) -> str:
    return str(host.task_dir or host.project_dir or "")


class Agent:
    """
    Runs one prompt against a model with tools until the model stops calling them.

    One `Agent` may serve several concurrent runs (different working directories); the MCP
    connector pool and the tool-call rate limiter are shared across them.
    """

    def __init__(
        self,
        *,
        mcp_manager: McpManager,
        provider_factory: ProviderFactory,
        mcp_servers: Mapping[str, McpServerConfig] | None = None,
        agent_profiles: list[AgentProfile] | None = None,
        pricing: PricingProvider | None = None,
        assembler: ToolAssembler | None = None,
        preparer: MessagePreparer | None = None,
        rate_limiter: ToolCallRateLimiter | None = None,
    ) -> None:
        self._mcp_manager = mcp_manager
        self._provider_factory = provider_factory
        self._mcp_servers: dict[str, McpServerConfig] = dict(mcp_servers or {})
        self._agent_profiles = list(agent_profiles or [])
        self._pricing = pricing
        self._assembler = assembler or ToolAssembler(mcp_manager=mcp_manager)
        self._preparer = preparer or MessagePreparer()
        self._rate_limiter = rate_limiter or ToolCallRateLimiter()
        self._cancel_tokens: dict[str, CancellationToken] = {}
        self._todo_stores: dict[str, TodoStore] = {}

    def interrupt(self, base_dir: str | Path) -> None:
        logger.info("Interrupting Agent run base_dir=%s", base_dir)
        token = self._cancel_tokens.get(str(base_dir))
        if token is not None:
            token.cancel()

    def todo_store(self, host: TaskHost) -> TodoStore:
        return self._todo_stores.setdefault(_run_key(host), TodoStore())

    async def run(
        self,
        host: TaskHost,
        profile: AgentProfile,
        prompt: str,
        *,
        context_messages: list[ContextMessage] | None = None,
        context_files: list[ContextFile] | None = None,
        system_prompt: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> AgentRunResult:
        run_key = _run_key(host)
        owns_cancel = cancel is None
        if cancel is None:
            cancel = CancellationToken()
            self._cancel_tokens[run_key] = cancel

        response_id = new_response_id()
        user_message = ContextMessage(role=MessageRole.USER, content=prompt)
        result_messages: list[ContextMessage] = [user_message]
        usage: UsageAggregator | None = None
        tool_calls: list[ToolCallRecord] = []
        error: str | None = None

        try:
            provider = self._provider_factory(profile)
            if provider is None:
                logger.error("Provider %s is not configured for profile %s", profile.provider, profile.id)
                host.add_log_message(LogLevel.ERROR, MODEL_NOT_CONFIGURED)
                return AgentRunResult(messages=[], error=MODEL_NOT_CONFIGURED)
            usage = UsageAggregator(provider_name=provider.name, model=provider.model, pricing=self._pricing)

            tools = await self._prepare_tools(host, profile, provider, cancel)
            if context_messages is None:
                context_messages = host.get_context_messages()
            if context_files is None:
                context_files = host.get_context_files()
            messages = self._preparer.prepare(
                host=host, profile=profile, context_messages=context_messages, context_files=context_files
            )
            messages.append(user_message)
            if system_prompt is None:
                system_prompt = build_system_prompt(profile, project_dir=host.project_dir, task_dir=host.task_dir)

            gate = ApprovalGate(host=host, profile=profile)
            repairer = ToolCallRepairer(provider)

            iteration = 0
            retry_count = 0
            while True:
                if cancel.cancelled:
                    logger.info("Prompt aborted by user")
                    break
                iteration += 1
                logger.info("Starting iteration %d", iteration)
                if iteration > profile.max_iterations:
                    logger.warning("Max iterations (%d) reached. Stopping agent.", profile.max_iterations)
                    host.add_log_message(LogLevel.WARNING, max_iterations_reached(profile.max_iterations))
                    break

                request = StreamRequest(
                    system=system_prompt,
                    messages=list(messages),
                    tools=[tool.spec() for tool in tools.values()],
                    temperature=profile.temperature,
                    max_output_tokens=profile.max_tokens,
                    provider_options=dict(profile.provider_options),
                )
                step = await self._stream_step(provider, request, host=host, cancel=cancel, response_id=response_id)
                if cancel.cancelled:
                    logger.info("Prompt aborted by user")
                    break

                if step.error is not None:
                    logger.error("Error during prompt: %s", step.error)
                    if is_retryable_error(step.error) and retry_count < MAX_RETRIES:
                        retry_count += 1
                        host.add_log_message(LogLevel.WARNING, f"{user_facing_error_message(step.error)} Retrying...")
                        continue
                    error = user_facing_error_message(step.error)
                    host.add_log_message(LogLevel.ERROR, error)
                    break

                step_messages = await self._process_step(
                    step,
                    host=host,
                    profile=profile,
                    tools=tools,
                    gate=gate,
                    repairer=repairer,
                    usage=usage,
                    system=system_prompt,
                    messages=messages,
                    cancel=cancel,
                    response_id=response_id,
                    records=tool_calls,
                )
                response_id = new_response_id()
                messages.extend(step_messages)
                result_messages.extend(step_messages)
                if cancel.cancelled:
                    logger.info("Prompt aborted by user")
                    break

                last_role = step_messages[-1].role if step_messages else None
                action = decide_next_action(step.finish_reason, last_role=last_role, retry_count=retry_count)
                if action is NextAction.RETRY:
                    logger.debug("Finish reason is %r after a %s message. Retrying...", step.finish_reason, last_role)
                    retry_count += 1
                    continue
                retry_count = 0
                if step.finish_reason is FinishReason.LENGTH:
                    host.add_log_message(LogLevel.WARNING, MAX_TOKENS_REACHED)
                if action is NextAction.STOP:
                    logger.info("Prompt finished. Reason: %s", step.finish_reason)
                    break
        except Exception as e:
            if cancel.cancelled:
                logger.info("Prompt aborted by user")
            else:
                logger.error("Error running prompt: %s", e, exc_info=True)
                error = user_facing_error_message(e)
                host.add_log_message(LogLevel.ERROR, error)
        finally:
            if owns_cancel:
                self._cancel_tokens.pop(run_key, None)
            host.process_response_message(ResponseMessage(id=response_id, content="", finished=True))

        return AgentRunResult(
            messages=result_messages,
            usage=usage.total if usage is not None else RunUsage(),
            tool_calls=tool_calls,
            error=error,
            aborted=cancel.cancelled,
        )

    async def estimate_tokens(self, host: TaskHost, profile: AgentProfile) -> int:
        try:
            provider = self._provider_factory(profile)
            if provider is None:
                logger.warning("Estimation failed: provider %s not configured", profile.provider)
                return 0
            messages = self._preparer.prepare(
                host=host,
                profile=profile,
                context_messages=host.get_context_messages(),
                context_files=host.get_context_files(),
            )
            tools = await self._assembler.build(profile=profile, provider_name=provider.name)
            system = build_system_prompt(profile, project_dir=host.project_dir, task_dir=host.task_dir)
            tool_defs = [
                {"name": spec.name, "description": spec.description, "inputSchema": spec.input_schema}
                for spec in (tool.spec() for tool in tools.values())
            ]
            parts = [system, f"Available tools: {json.dumps(tool_defs, indent=2)}"]
            parts.extend(message.text() for message in messages)
            return estimate_tokens("\n".join(parts))
        except Exception as e:
            logger.error("Error counting tokens: %s", e)
            return 0

    async def _prepare_tools(
        self, host: TaskHost, profile: AgentProfile, provider: StreamProvider, cancel: CancellationToken
    ) -> ToolSet:
        project_dir = str(host.project_dir) if host.project_dir is not None else None
        task_dir = str(host.task_dir) if host.task_dir is not None else None
        try:
            connectors = await self._mcp_manager.init_mcp_connectors(
                self._mcp_servers,
                project_dir=project_dir,
                task_dir=task_dir,
                enabled_servers=profile.enabled_servers,
            )
        except Exception as e:
            logger.error("Error reinitializing MCP clients: %s", e)
            host.add_log_message(LogLevel.ERROR, f"Error reinitializing MCP clients: {e}")
            connectors = []

        return await self._assembler.build(
            profile=profile,
            provider_name=provider.name,
            connectors=connectors,
            todo_store=self.todo_store(host),
            subagent_profiles=subagent_profiles(self._agent_profiles, current=profile),
            subagent_runner=self._subagent_runner(cancel),
        )

    def _subagent_runner(self, cancel: CancellationToken) -> SubagentRunner:
        async def _run(sub_profile: AgentProfile, prompt: str, ctx: ToolContext) -> str:
            child = sub_profile.model_copy(update={"is_subagent": True, "use_subagents": False})
            if child.subagent.context_memory is ContextMemoryMode.FULL_CONTEXT:
                history = ctx.host.get_context_messages()
            elif child.subagent.context_memory is ContextMemoryMode.LAST_MESSAGE:
                history = ctx.host.get_context_messages()[-1:]
            else:
                history = []
            logger.info("Running sub-agent %s", child.id)
            result = await self.run(ctx.host, child, prompt, context_messages=history, context_files=[], cancel=cancel)
            answer = next(
                (m.text() for m in reversed(result.messages) if m.role is MessageRole.ASSISTANT and m.text().strip()),
                None,
            )
            return answer or "Sub-agent finished without a response."

        return _run

    async def _stream_step(
        self,
        provider: StreamProvider,
        request: StreamRequest,
        *,
        host: TaskHost,
        cancel: CancellationToken,
        response_id: str,
    ) -> _StepOutput:
        step = _StepOutput()
        has_reasoning = False

        def _emit(content: str) -> None:
            host.process_response_message(ResponseMessage(id=response_id, content=content, finished=False))

        async with contextlib.aclosing(split_think_tags(provider.stream(request, cancel=cancel))) as events:
            async for event in events:
                if cancel.cancelled:
                    break
                kind = event.kind
                if kind is StreamEventKind.TEXT_DELTA:
                    text = event.text or ""
                    if has_reasoning:
                        _emit(ANSWER_RESPONSE_START_TAG)
                        has_reasoning = False
                    if text.strip() or step.text.strip():
                        _emit(text)
                        step.text += text
                elif kind is StreamEventKind.REASONING_DELTA:
                    if not has_reasoning:
                        _emit(THINKING_RESPONSE_START_TAG)
                        has_reasoning = True
                    _emit(event.text or "")
                    step.reasoning += event.text or ""
                elif kind is StreamEventKind.TOOL_INPUT_START:
                    host.add_log_message(LogLevel.LOADING, "Preparing tool...")
                elif kind is StreamEventKind.TOOL_CALL and event.tool_call is not None:
                    host.add_log_message(LogLevel.LOADING, "Executing tool...")
                    step.tool_calls.append(event.tool_call)
                elif kind is StreamEventKind.STEP_FINISH:
                    step.finish_reason = event.finish_reason
                    step.usage = event.usage
                    step.provider_metadata = event.provider_metadata
                elif kind is StreamEventKind.ERROR:
                    step.error = event.error
        return step

    async def _process_step(
        self,
        step: _StepOutput,
        *,
        host: TaskHost,
        profile: AgentProfile,
        tools: ToolSet,
        gate: ApprovalGate,
        repairer: ToolCallRepairer,
        usage: UsageAggregator,
        system: str,
        messages: list[ContextMessage],
        cancel: CancellationToken,
        response_id: str,
        records: list[ToolCallRecord],
    ) -> list[ContextMessage]:
        logger.info(
            "Step finished. Reason: %s text=%r tool_calls=%s",
            step.finish_reason,
            step.text[:100],
            [c.tool_name for c in step.tool_calls],
        )
        report = usage.report(step.usage, agent_total_cost=host.agent_total_cost)
        has_tool_calls = bool(step.tool_calls)

        if step.reasoning or step.text.strip():
            if step.reasoning and step.text:
                content = f"{THINKING_RESPONSE_START_TAG}{step.reasoning.strip()}{ANSWER_RESPONSE_START_TAG}{step.text.strip()}"
            else:
                content = step.reasoning or step.text
            host.process_response_message(
                ResponseMessage(
                    id=response_id,
                    content=content,
                    finished=True,
                    reasoning=step.reasoning or None,
                    usage_report=None if has_tool_calls else report,
                )
            )

        executed: list[ToolCallRecord] = []
        for raw_call in step.tool_calls:
            if cancel.cancelled:
                break
            parsed = await repairer.resolve(raw_call, tools=tools, system=system, messages=messages, cancel=cancel)
            record = await self._execute_tool(parsed, host=host, profile=profile, gate=gate, cancel=cancel)
            executed.append(record)
            records.append(record)

        out: list[ContextMessage] = []
        if step.reasoning or step.text.strip() or executed:
            out.append(
                ContextMessage(
                    role=MessageRole.ASSISTANT,
                    content=step.text,
                    id=response_id,
                    reasoning=step.reasoning or None,
                    tool_calls=[record.as_message_call() for record in executed],
                    usage_report=None if executed else report,
                )
            )
        for index, record in enumerate(executed):
            step_report = report if index == len(executed) - 1 else None
            result = record.result or ""
            host.add_tool_message(record.tool_call_id, record.server_name, record.tool_name, record.arguments, result, step_report)
            out.append(
                ContextMessage(
                    role=MessageRole.TOOL,
                    content=result,
                    tool_call_id=record.tool_call_id,
                    tool_name=record.key,
                    usage_report=step_report,
                )
            )

        if not cancel.cancelled:
            host.add_log_message(LogLevel.LOADING, None)
        return out

    async def _execute_tool(
        self,
        parsed: ParsedToolCall,
        *,
        host: TaskHost,
        profile: AgentProfile,
        gate: ApprovalGate,
        cancel: CancellationToken,
    ) -> ToolCallRecord:
        tool = parsed.tool
        record = ToolCallRecord(
            tool_call_id=parsed.tool_call_id,
            tool_id=tool.tool_id,
            key=tool.key,
            server_name=tool.server_name,
            tool_name=tool.tool_name,
            arguments=parsed.arguments,
        )
        host.add_tool_message(parsed.tool_call_id, tool.server_name, tool.tool_name, parsed.arguments)

        outcome = await gate.check(tool, parsed.arguments)
        if not tool.internal:
            record.approved = outcome.approved
        record.user_input = outcome.user_input
        if not outcome.approved:
            record.result = denied_result_text(outcome)
            return record

        if not tool.internal:
            waited = await self._rate_limiter.wait(profile.min_time_between_tool_calls, cancel)
            if not waited or cancel.cancelled:
                logger.info("Run aborted before executing tool %s", tool.tool_id)
                record.aborted = True
                record.result = ABORTED_RESULT
                return record

        ctx = ToolContext(
            tool_call_id=parsed.tool_call_id,
            host=host,
            profile=profile,
            cancel=cancel,
            project_dir=host.project_dir,
            task_dir=host.task_dir,
        )
        logger.debug("Executing tool %s", tool.tool_id)
        try:
            result = await tool.execute(parsed.arguments, ctx)
        except Exception as e:
            logger.error("Error executing tool %s: %s", tool.tool_id, e)
            record.error = str(e)
            record.result = f"Error executing tool {tool.tool_name}: {e}"
            return record
        finally:
            if not tool.internal:
                self._rate_limiter.mark()
        record.result = _tool_result_text(result)
        return record
