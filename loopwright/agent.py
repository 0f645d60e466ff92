"""Agent orchestration for Loopwright."""

import asyncio
from enum import Enum
import json
from typing import Any

from pydantic import BaseModel, field_validator

from loopwright.config import Config, get_config
from loopwright.context import ContextAssembler, render_header
from loopwright.embeddings import create_embedding_provider
from loopwright.exceptions import (
    AgentTerminatedError,
    BudgetExceededError,
    ToolExecutionError,
    ToolUnavailableError,
)
from loopwright.history import compress_history
from loopwright.instructions import InstructionLoader
from loopwright.llm import LLMProvider, Message, get_provider
from loopwright.logging import get_logger
from loopwright.memory import MemoryIndex
from loopwright.recovery import RESPONSE_FORMAT, JsonExtractor, ResponseRecoverer
from loopwright.tokens import TokenEstimator
from loopwright.tools import DO_NOTHING, TASK_COMPLETE, ToolRegistry, create_default_registry

log = get_logger(__name__)


class AgentState(str, Enum):
    """Lifecycle of an agent between turns."""

    START = "START"
    IDLE = "IDLE"
    TOOL_STAGED = "TOOL_STAGED"
    STOP = "STOP"


class StagedTool(BaseModel):
    """Command proposed by the model and awaiting approval."""

    name: str | None = None
    # None means the model omitted args entirely.
    args: dict[str, Any] | None = None

    @field_validator("args", mode="before")
    @classmethod
    def _merge_arg_list(cls, value: Any) -> Any:
        """Accept ``[{"arg": "value"}, ...]`` as well as a plain mapping."""
        if isinstance(value, list):
            merged: dict[str, Any] = {}
            for item in value:
                if isinstance(item, dict):
                    merged.update(item)
            return merged
        if value is not None and not isinstance(value, dict):
            return None
        return value

    @classmethod
    def from_command(cls, command: Any) -> "StagedTool":
        if isinstance(command, dict):
            name = command.get("name")
            if name is not None:
                name = str(name).strip() or None
            return cls(name=name, args=command.get("args"))
        if isinstance(command, str):
            return cls(name=command.strip() or None)
        return cls()


AssistantReply = dict[str, Any] | str


class Agent:
    """Plan/command loop around a chat model with bounded prompts.

    One call to ``submit_turn`` runs one full cycle: resolve the staged command,
    assemble a prompt that fits the model's context window, ask the model,
    recover a structured reply from its output and update plan, progress and
    state. Turns on one agent are serialized.
    """

    def __init__(
        self,
        provider: LLMProvider | None = None,
        memory: MemoryIndex | None = None,
        tools: ToolRegistry | None = None,
        *,
        name: str | None = None,
        description: str | None = None,
        goals: list[str] | None = None,
        constraints: list[str] | None = None,
        temperature: float | None = None,
        config: Config | None = None,
        instructions: InstructionLoader | None = None,
    ):
        """Initialize the agent.

        Args:
            provider: Chat provider (defaults to the configured global provider)
            memory: Long-term memory index (defaults to one built from config)
            tools: Tool registry (defaults to the tools enabled in config)
            name: Persona name
            description: Persona description
            goals: Goals listed in every prompt header
            constraints: Constraints listed in every prompt header
            temperature: Sampling temperature for turns
            config: Configuration override
            instructions: Instruction template loader
        """
        cfg = config or get_config()
        self.config = cfg
        self.provider = provider or get_provider()
        self.name = name or cfg.agent.name
        self.description = description or cfg.agent.description
        self.goals = list(goals if goals is not None else cfg.agent.goals)
        self.constraints = list(constraints if constraints is not None else cfg.agent.constraints)
        self.temperature = cfg.model.temperature if temperature is None else temperature
        self.reply_tokens = int(cfg.model.reply_tokens)
        self.instructions = instructions or InstructionLoader()
        self.instructions.verify()

        self.memory = memory if memory is not None else MemoryIndex(
            create_embedding_provider(cfg.embeddings),
            dimensions=cfg.embeddings.dimensions,
        )
        self.tools = tools if tools is not None else create_default_registry(cfg, self.memory)

        self.estimator = TokenEstimator(self.provider.model)
        self.assembler = ContextAssembler(
            self.memory,
            self.estimator,
            history_window=cfg.context.history_window,
            memory_results=cfg.context.memory_results,
            instructions=self.instructions,
        )
        extractor = None
        if cfg.context.json_extraction_fallback:
            extractor = JsonExtractor(
                self.provider,
                instructions=self.instructions,
                estimator=self.estimator,
                reply_tokens=self.reply_tokens,
            )
        self.recoverer = ResponseRecoverer(extractor)

        response_format_block = self.instructions.render(
            "response_format.md",
            response_format=json.dumps(RESPONSE_FORMAT),
        )
        self.init_prompt = self.instructions.render("init_prompt.md", response_format_block=response_format_block)
        self.next_prompt = self.instructions.render("next_prompt.md", response_format_block=response_format_block)

        self.history: list[Message] = []
        self.plan: list[str] = []
        self.progress: list[str] = []
        self.state = AgentState.START
        self.staged_tool: StagedTool | None = None
        self.last_token_count = 0
        self.last_max_reply_tokens = 0
        self._unavailable_tool: str | None = None
        self._turn_lock = asyncio.Lock()

    # Public surface

    def get_state(self) -> AgentState:
        return self.state

    def get_history(self) -> list[Message]:
        """Compressed view of the session history."""
        return compress_history(self.history)

    def get_plan(self) -> list[str]:
        return list(self.plan)

    def get_progress(self) -> list[str]:
        return list(self.progress)

    def clear_state(self) -> None:
        """Start over with the same persona, goals and constraints."""
        self.state = AgentState.START
        self.staged_tool = None
        self.plan = []
        self.progress = []
        self.history = []
        self.memory.clear()
        self._unavailable_tool = None
        log.info("Agent state cleared", agent=self.name)

    @property
    def token_limit(self) -> int:
        return self.provider.token_limit

    # Prompt building

    def header_prompt(self) -> str:
        tools_prompt = ""
        if self.config.context.include_tools_prompt:
            tools_prompt = self.instructions.render(
                "tools_header.md",
                tool_lines="\n".join(self.tools.tools_prompt()),
            ) + "\n"
        return render_header(
            self.name,
            self.description,
            goals=self.goals,
            constraints=self.constraints,
            plan=self.plan,
            progress=self.progress,
            tools_prompt=tools_prompt,
        )

    def full_message(self, message: str | None) -> str:
        """Prefix the user message with the state-dependent instructions."""
        template = self.init_prompt if self.state == AgentState.START else self.next_prompt
        return f"{template}\n\n{message or ''}"

    # Turn

    async def submit_turn(
        self,
        message: str | None = None,
        approve_staged_tool: bool = False,
    ) -> AssistantReply | None:
        """Run one plan/command cycle.

        Args:
            message: Optional user message for this turn
            approve_staged_tool: Execute the staged command instead of declining it

        Returns:
            Structured reply, the raw reply text when it could not be structured,
            or None when the approved command was ``task_complete``

        Raises:
            AgentTerminatedError: the agent already stopped
            BudgetExceededError: the prompt leaves no room for a reply
            TransportError: the chat transport failed
        """
        async with self._turn_lock:
            if self.state == AgentState.STOP:
                raise AgentTerminatedError()

            log.info("Turn started", agent=self.name, state=self.state.value)
            effective_input = self.full_message(message)

            if self.staged_tool is not None:
                tool = self.staged_tool
                if approve_staged_tool:
                    await self._run_staged_tool(tool)
                    if tool.name == TASK_COMPLETE:
                        self.history.append(
                            Message(role="system", content="Completed all user specified tasks.")
                        )
                        self.staged_tool = None
                        self._set_state(AgentState.STOP)
                        return None
                else:
                    self.history.append(
                        Message(
                            role="system",
                            content=f"User did not approve running {tool.name or 'the proposed command'}.",
                        )
                    )
                self.staged_tool = None

            token_limit = self.token_limit
            prompt = self.assembler.assemble(
                header=self.header_prompt(),
                history=self.history,
                user_input=effective_input,
                budget=token_limit - self.reply_tokens,
            )
            max_tokens = min(self.reply_tokens, max(token_limit - prompt.token_count, 0))
            if max_tokens == 0:
                raise BudgetExceededError(prompt.token_count, token_limit)
            self.last_token_count = prompt.token_count
            self.last_max_reply_tokens = max_tokens

            messages = self._remind_unavailable_tool(prompt.messages)
            response = await self.provider.complete(
                messages,
                temperature=self.temperature,
                max_tokens=max_tokens,
            )
            reply = await self.recoverer.recover_async(response.content)
            if isinstance(reply, dict):
                reply = self._normalize_reply(reply)
                self._apply_reply(reply)
            else:
                self._set_state(AgentState.IDLE)

            self.history.append(Message(role="user", content=effective_input))
            self.history.append(
                Message(
                    role="assistant",
                    content=json.dumps(reply) if isinstance(reply, dict) else reply,
                )
            )
            log.info(
                "Turn finished",
                agent=self.name,
                state=self.state.value,
                structured=isinstance(reply, dict),
                token_count=prompt.token_count,
                max_reply_tokens=max_tokens,
            )
            return reply

    def _set_state(self, state: AgentState) -> None:
        if state != self.state:
            log.debug("Agent state changed", previous=self.state.value, current=state.value)
        self.state = state

    @staticmethod
    def _normalize_reply(reply: dict[str, Any]) -> dict[str, Any]:
        """Treat a bare command object as ``{"command": ...}``."""
        if "command" not in reply and "thoughts" not in reply and "name" in reply:
            return {"command": reply}
        return reply

    @staticmethod
    def _plan_is_finished(plan: list[Any]) -> bool:
        if not plan:
            return True
        return len(plan) == 1 and str(plan[0]).replace("-", "").strip() == ""

    def _apply_reply(self, reply: dict[str, Any]) -> None:
        thoughts = reply.get("thoughts")
        if not isinstance(thoughts, dict):
            thoughts = {}
        plan = thoughts.get("plan")

        if isinstance(plan, list) and self._plan_is_finished(plan):
            self.staged_tool = StagedTool(name=TASK_COMPLETE, args={})
            self.plan = []
            self._set_state(AgentState.STOP)
        else:
            command = reply.get("command")
            if command:
                self.staged_tool = StagedTool.from_command(command)
                self._set_state(AgentState.TOOL_STAGED)
            else:
                self._set_state(AgentState.IDLE)

            if isinstance(plan, str) and plan.strip():
                self.plan = [plan]
            elif isinstance(plan, list):
                self.plan = [str(step) for step in plan]

        progress = thoughts.get("progress")
        if isinstance(progress, str) and progress.strip():
            self.progress.append(progress)
        elif isinstance(progress, list):
            self.progress.extend(str(step) for step in progress if str(step).strip())

    def _remind_unavailable_tool(self, messages: list[Message]) -> list[Message]:
        """Rewrite the last user message when the model keeps proposing a missing tool."""
        if not self._unavailable_tool:
            return messages

        last_command = None
        for msg in reversed(messages):
            if msg.role == "assistant":
                parsed = self.recoverer.parse(msg.content)
                if parsed is not None:
                    last_command = StagedTool.from_command(self._normalize_reply(parsed).get("command")).name
                break
        if last_command != self._unavailable_tool:
            return messages

        for idx in range(len(messages) - 1, -1, -1):
            if messages[idx].role == "user":
                reminder = self.instructions.render(
                    "unavailable_tool_reminder.md",
                    tool_name=self._unavailable_tool,
                )
                rewritten = list(messages)
                rewritten[idx] = Message(role="user", content=f"{reminder}\n\n{messages[idx].content}")
                log.info("Reminding model of unavailable tool", tool=self._unavailable_tool)
                return rewritten
        return messages

    def _record_system(self, content: str) -> None:
        self.history.append(Message(role="system", content=content))

    async def _run_staged_tool(self, tool: StagedTool) -> None:
        """Execute the staged command and record the outcome as a system message."""
        self._unavailable_tool = None
        if not tool.name:
            self._record_system("Command name not provided. Make sure to follow the specified response format.")
            return

        args = tool.args or {}
        if tool.name == TASK_COMPLETE:
            self._record_command_output(tool.name, args, json.dumps({"success": True}))
            return
        if tool.name == DO_NOTHING:
            self._record_command_output(tool.name, args, json.dumps({"response": "Nothing Done."}))
            return
        if tool.args is None:
            self._record_system("Command args not provided. Make sure to follow the specified response format.")
            return

        try:
            result = await self.tools.execute(tool.name, args)
        except ToolUnavailableError as e:
            log.warning("Model proposed unavailable tool", tool=tool.name)
            self._unavailable_tool = tool.name
            self._record_system(str(e))
            return
        except ToolExecutionError as e:
            log.warning("Tool execution failed", tool=tool.name, error=str(e))
            self._record_system(str(e))
            return
        self._record_command_output(tool.name, args, result.content)

    def _record_command_output(self, name: str, args: dict[str, Any], output: str) -> None:
        self._record_system(f'Command "{name}" with args {json.dumps(args)} returned:\n{output}')
