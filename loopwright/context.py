"""Bounded prompt assembly from header, replayed history and retrieved memory."""

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from loopwright.history import compress_history
from loopwright.instructions import InstructionLoader
from loopwright.llm import Message
from loopwright.logging import get_logger
from loopwright.memory import MemoryIndex
from loopwright.tokens import TokenEstimator

log = get_logger(__name__)

NOOP_TOOL_NAME = "do_nothing"


@dataclass
class AssembledPrompt:
    """Messages ready for the chat transport and their estimated cost."""

    messages: list[Message]
    token_count: int
    # True when eviction ran out of droppable items while still over budget.
    exhausted: bool = False
    dropped_history: int = 0
    dropped_memory: int = 0


def _numbered_section(title: str, items: Sequence[str], prefix: str = "") -> str:
    lines = [title]
    for idx, item in enumerate(items, start=1):
        lines.append(f"{idx}. {prefix}{item}")
    return "\n".join(lines) + "\n"


def render_header(
    name: str,
    description: str,
    goals: Sequence[str] = (),
    constraints: Sequence[str] = (),
    plan: Sequence[str] = (),
    progress: Sequence[str] = (),
    tools_prompt: str = "",
) -> str:
    """Render persona, goals, constraints, plan, progress and tools, in that order."""
    sections = [f"You are {name}, {description}."]
    if goals:
        sections.append(_numbered_section("GOALS:", goals))
    if constraints:
        sections.append(_numbered_section("CONSTRAINTS:", constraints))
    if plan:
        sections.append("CURRENT PLAN:\n" + "\n".join(plan) + "\n")
    if progress:
        sections.append(_numbered_section("PROGRESS SO FAR:", progress, prefix="DONE - "))
    if tools_prompt:
        sections.append(tools_prompt)
    return "\n".join(sections) + "\n"


def memory_query(history: Sequence[Message], window: int = 10) -> str:
    """Text of the last ``window`` non-user messages, skipping no-op tool results."""
    relevant = [
        msg
        for msg in history
        if msg.role != "user" and not (msg.role == "system" and NOOP_TOOL_NAME in msg.content)
    ]
    if window <= 0:
        return ""
    return "\n".join(msg.content for msg in relevant[-window:])


def _unique(items: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


class ContextAssembler:
    """Compose a prompt and evict low-priority items until it fits the budget.

    The header and the most recent replayed message are never evicted. Older
    replayed history goes first, oldest first, then retrieved memory, oldest
    first. When nothing droppable is left the over-budget prompt is returned
    with ``exhausted`` set.
    """

    def __init__(
        self,
        memory: MemoryIndex | None,
        estimator: TokenEstimator,
        *,
        history_window: int = 10,
        memory_results: int = 5,
        instructions: InstructionLoader | None = None,
    ):
        self.memory = memory
        self.estimator = estimator
        self.history_window = history_window
        self.memory_results = memory_results
        self.instructions = instructions or InstructionLoader()

    def _retrieve(self, query: str) -> list[str]:
        if self.memory is None or not query.strip():
            return []
        return _unique(self.memory.get(query, self.memory_results))

    def _memory_message(self, documents: Sequence[str]) -> Message:
        return Message(
            role="system",
            content=self.instructions.render(
                "memory_context.md",
                memory_items="\n".join(documents),
            )
            + "\n",
        )

    @staticmethod
    def timestamp_message(now: datetime | None = None) -> Message:
        current = now or datetime.now()
        return Message(role="system", content=f"The current time and date is {current:%c}")

    def assemble(
        self,
        *,
        header: str,
        history: Sequence[Message],
        user_input: str = "",
        budget: int,
        query: str | None = None,
        now: datetime | None = None,
    ) -> AssembledPrompt:
        """Build the prompt for the next turn.

        Args:
            header: Rendered persona/goals/plan header text
            history: Full session history; it is not modified
            user_input: Effective user message for this turn (omitted when empty)
            budget: Token ceiling the estimate must stay below
            query: Memory retrieval text (defaults to the recent non-user history)
            now: Timestamp override

        Returns:
            AssembledPrompt with the final messages and estimated token count
        """
        header_msg = Message(role="system", content=header)
        time_msg = self.timestamp_message(now)
        retrieval_query = memory_query(history, self.history_window) if query is None else query
        memories = self._retrieve(retrieval_query)
        replay = compress_history(history)
        user_msgs = [Message(role="user", content=user_input)] if user_input else []

        def compose() -> list[Message]:
            messages = [header_msg, time_msg, *replay[:-1]]
            if memories:
                messages.append(self._memory_message(memories))
            messages.extend(replay[-1:])
            messages.extend(user_msgs)
            return messages

        dropped_history = 0
        dropped_memory = 0
        exhausted = False
        candidate = compose()
        token_count = self.estimator.estimate(candidate)
        while token_count >= budget:
            if len(replay) > 1:
                replay.pop(0)
                dropped_history += 1
            elif memories:
                memories.pop(0)
                dropped_memory += 1
            else:
                exhausted = True
                break
            candidate = compose()
            token_count = self.estimator.estimate(candidate)

        if dropped_history or dropped_memory or exhausted:
            log.info(
                "Prompt trimmed to budget",
                budget=budget,
                token_count=token_count,
                dropped_history=dropped_history,
                dropped_memory=dropped_memory,
                exhausted=exhausted,
            )
        return AssembledPrompt(
            messages=candidate,
            token_count=token_count,
            exhausted=exhausted,
            dropped_history=dropped_history,
            dropped_memory=dropped_memory,
        )
