"""Conversation control loop: stream a response, run its tools, repeat."""

from typing import Any, AsyncIterator, Protocol

from bashpilot.cli import TerminalUI
from bashpilot.exceptions import StreamInterruptedError
from bashpilot.llm.events import StreamEvent
from bashpilot.logging import get_logger
from bashpilot.session import Conversation
from bashpilot.streaming import AssembledResponse, StreamAssembler
from bashpilot.tools.registry import ToolRegistry, ToolResult

log = get_logger(__name__)


class EventSource(Protocol):
    """Anything that streams a model response for a history."""

    def stream_events(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        system: str | None = None,
    ) -> AsyncIterator[StreamEvent]: ...


class Agent:
    """Drives one conversation against the model and the local tools."""

    def __init__(
        self,
        provider: EventSource,
        tools: ToolRegistry,
        ui: TerminalUI,
        system_prompt: str = "",
    ):
        self.provider = provider
        self.tools = tools
        self.ui = ui
        self.system_prompt = system_prompt
        self.conversation = Conversation()
        self.last_usage: dict[str, int] = {}

    def new_conversation(self) -> None:
        """Start over with an empty history."""
        self.conversation = Conversation()
        self.last_usage = {}
        log.info("Started new conversation")

    async def run_turn(self, user_input: str) -> None:
        """Send user input and keep going until the model stops calling tools.

        Raises:
            StreamInterruptedError: the response stream failed. Finalized
                blocks were recorded (and their tools run) before raising.
        """
        self.conversation.add_user_message(user_input)

        while True:
            response = await self._stream_response()
            if not await self._record(response):
                return

    async def _stream_response(self) -> AssembledResponse:
        assembler = StreamAssembler(
            on_text=self.ui.print_streaming,
            on_tool_start=lambda name, _id: self.ui.print_tool_preparing(name),
        )
        self.ui.begin_assistant_stream()
        try:
            response = await assembler.assemble(
                self.provider.stream_events(
                    self.conversation.messages,
                    tools=self.tools.get_definitions(),
                    system=self.system_prompt or None,
                )
            )
        except StreamInterruptedError as e:
            self.ui.end_assistant_stream()
            log.warning("Response stream interrupted", error=str(e))
            if isinstance(e.response, AssembledResponse):
                await self._record(e.response)
            raise
        self.ui.end_assistant_stream()
        self.last_usage = dict(response.usage)
        return response

    async def _record(self, response: AssembledResponse) -> bool:
        """Append the assistant turn and the results of its tool calls.

        Returns:
            True when tool results were added and the model should continue
        """
        if response.content:
            self.conversation.add_assistant_message(response.content)
        if not response.tool_invocations:
            return False

        results: list[ToolResult] = []
        for invocation in response.tool_invocations:
            self.ui.print_tool_notice(
                invocation.name,
                invocation.input if invocation.input is not None else invocation.raw_input,
            )
            result = await self.tools.dispatch(invocation)
            self.ui.print_tool_result(invocation.name, result.content, result.is_error)
            results.append(result)

        self.conversation.add_tool_results(results)
        return True
