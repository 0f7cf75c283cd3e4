"""One cancellable user turn: progress ticker, Escape listener, and the agent/cancel race."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from ..services.agent_loop import AgentResponse
from ..services.ollama_client import filter_thinking_blocks
from . import renderer
from .input_handler import InputStateMachine
from .keys import KeyReader, is_bare_escape

if TYPE_CHECKING:
    from ..services.agent_loop import Agent

logger = logging.getLogger(__name__)

CANCEL_HINT_AFTER = 60.0


@dataclass
class TurnOutcome:
    kind: str  # "response", "cancelled" or "error"
    elapsed: float
    response: AgentResponse | None = None
    error: str = ""


def _discard_result(task: asyncio.Task[AgentResponse]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned turn finished with %r", exc)


class RoundTripRunner:
    def __init__(
        self,
        input_machine: InputStateMachine,
        key_reader: KeyReader,
        tick_interval: float = 1.0,
        cancel_hint_after: float = CANCEL_HINT_AFTER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.input_machine = input_machine
        self.key_reader = key_reader
        self.tick_interval = tick_interval
        self.cancel_hint_after = cancel_hint_after
        self._clock = clock
        self._cancel_event: asyncio.Event | None = None

    @property
    def active(self) -> bool:
        return self._cancel_event is not None

    def cancel(self) -> None:
        """Cancel the turn in flight, if any."""
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def _tick(self, thinking: bool, start: float) -> None:
        cancel_hint = False
        while True:
            await asyncio.sleep(self.tick_interval)
            elapsed = self._clock() - start
            if elapsed >= self.cancel_hint_after:
                cancel_hint = True
            if thinking or cancel_hint:
                renderer.write_progress(thinking, elapsed, cancel_hint)

    async def run(self, agent: Agent, text: str) -> TurnOutcome:
        """Run ``agent.chat(text)`` until it answers or the user presses a bare Escape.

        Cancellation is advisory: the agent task is not killed, only abandoned, and it
        sees the same event and abandons its in-flight model or tool call.
        """
        machine = self.input_machine
        thinking = machine.thinking_enabled
        cancel_event = asyncio.Event()

        def on_key(chunk: str) -> None:
            if is_bare_escape(chunk):
                cancel_event.set()

        machine.set_waiting(True)
        self._cancel_event = cancel_event
        self.key_reader.add_listener(on_key)
        start = self._clock()
        renderer.start_progress(thinking)

        ticker = asyncio.create_task(self._tick(thinking, start))
        agent_task = asyncio.create_task(agent.chat(text, cancel_event=cancel_event))
        cancel_wait = asyncio.create_task(cancel_event.wait())
        try:
            done, _pending = await asyncio.wait({agent_task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()
            ticker.cancel()
            try:
                await ticker
            except asyncio.CancelledError:
                pass
            self.key_reader.remove_listener(on_key)
            self._cancel_event = None
            machine.set_waiting(False)
            if not agent_task.done():
                agent_task.add_done_callback(_discard_result)

        elapsed = self._clock() - start
        if agent_task not in done:
            outcome = TurnOutcome(kind="cancelled", elapsed=elapsed)
        elif agent_task.exception() is not None:
            exc = agent_task.exception()
            logger.error("Turn failed: %s", exc, exc_info=exc)
            outcome = TurnOutcome(kind="error", elapsed=elapsed, error=str(exc) or type(exc).__name__)
        else:
            response = agent_task.result()
            kind = "cancelled" if response.cancelled else "response"
            outcome = TurnOutcome(kind=kind, elapsed=elapsed, response=response)

        self.render(outcome, thinking)
        return outcome

    def render(self, outcome: TurnOutcome, thinking: bool) -> None:
        if outcome.kind == "cancelled":
            renderer.render_cancelled(thinking, outcome.elapsed)
            return
        if outcome.kind == "error":
            renderer.clear_progress_line()
            renderer.render_error(outcome.error)
            return

        assert outcome.response is not None
        renderer.render_completed(thinking, outcome.elapsed)
        content = outcome.response.content
        if not self.input_machine.thinking_enabled:
            content = filter_thinking_blocks(content)
        renderer.render_answer(content, outcome.response.tools_used)
