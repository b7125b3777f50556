import json
import logging
import time
from typing import Any

from .backends import _is_api_error
from .errors import BackendUnavailableError, MaxRoundsExceededError, ShoppingAgentError
from .models import AgentConfig, AgentResponse, CartOverviewLine, Product, Reply, ToolCall, ToolResponse
from .store import CartStore, CatalogStore
from .tools import TOOLS, ToolDispatcher

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "Welcome to ng-produce. You are a superstar agent for this ecommerce store. "
    "You will assist users by answering questions about the inventory and by adding "
    "items to or removing items from the cart. If you are asked for the ingredients "
    "of a recipe, first get the inventory, which contains the items and their prices."
)


class ChatSession:
    """One conversation with a backend, kept as OpenAI-style chat messages."""

    def __init__(self, client, tools: list[dict] = TOOLS, system_prompt: str = SYSTEM_INSTRUCTION,
                 max_retries: int = 2, retry_delay: float = 1.0):
        self.client = client
        self.tools = tools
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.llm_requests = 0
        self.llm_total_time = 0.0
        self._messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]

    @property
    def history(self) -> list[dict[str, Any]]:
        return list(self._messages)

    def truncate(self, length: int) -> None:
        del self._messages[length:]

    def send_message(self, text: str) -> Reply:
        return self._send([{"role": "user", "content": text}])

    def send_tool_response(self, call: ToolCall, response: ToolResponse, text: str = "") -> Reply:
        # Each tool result travels with the single call it answers, so the
        # transcript stays valid when the rest of a batch is never answered.
        # ``text`` is whatever the backend said alongside the call batch.
        return self._send([
            {
                "role": "assistant",
                "content": text or None,
                "tool_calls": [{
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }],
            },
            {
                "role": "tool",
                "tool_call_id": call.id,
                "content": json.dumps(response.result),
            },
        ])

    def _send(self, turn: list[dict[str, Any]]) -> Reply:
        messages = self._messages + turn

        for attempt in range(1 + self.max_retries):
            start = time.time()
            try:
                reply = self.client.create_completion(messages, self.tools)
            except Exception as e:
                if not _is_api_error(e):
                    raise
                if attempt < self.max_retries:
                    logger.warning("Backend request failed (attempt %d/%d): %s",
                                   attempt + 1, 1 + self.max_retries, e)
                    time.sleep(self.retry_delay)
                    continue
                raise BackendUnavailableError(f"Backend unavailable: {e}") from e
            finally:
                self.llm_total_time += time.time() - start
                self.llm_requests += 1
            break

        self._messages.extend(turn)
        if not reply.tool_calls:
            self._messages.append({"role": "assistant", "content": reply.text})
        return reply


class ShoppingAgent:
    """Drives the tool-calling conversation for one user session."""

    def __init__(self, client, config: AgentConfig | None = None,
                 catalog: CatalogStore | None = None, system_prompt: str = SYSTEM_INSTRUCTION):
        self.config = config or AgentConfig()
        self.catalog = catalog if catalog is not None else CatalogStore()
        self.cart = CartStore(self.catalog)
        self.dispatcher = ToolDispatcher(self.catalog, self.cart)
        self.session = ChatSession(
            client,
            tools=TOOLS,
            system_prompt=system_prompt,
            max_retries=self.config.max_retries,
            retry_delay=self.config.retry_delay,
        )
        self._rounds = 0
        self._tool_calls: list[ToolCall] = []

    def ask(self, prompt: str) -> str:
        return self.run(prompt).final_message

    def run(self, prompt: str) -> AgentResponse:
        """Answer one user prompt, executing whatever tools the backend asks for.

        On failure the transcript is rolled back to before ``prompt``; cart and
        filter changes made by tools that already ran are kept.
        """
        mark = len(self.session.history)
        requests_before = self.session.llm_requests
        time_before = self.session.llm_total_time
        self._rounds = 0
        self._tool_calls = []

        try:
            reply = self.session.send_message(prompt)
            if reply.tool_calls:
                reply = self._call_functions(reply)
        except ShoppingAgentError:
            self.session.truncate(mark)
            raise

        logger.info("Answered after %d tool rounds with %d tool calls", self._rounds, len(self._tool_calls))
        return AgentResponse(
            tool_calls=list(self._tool_calls),
            llm_requests=self.session.llm_requests - requests_before,
            llm_total_time=self.session.llm_total_time - time_before,
            final_message=reply.text,
        )

    def _call_functions(self, batch: Reply) -> Reply:
        """Run one batch of call-requests, one backend round-trip per call.

        Only batches count against ``max_rounds``; the calls inside a batch
        are not capped.
        """
        if self._rounds >= self.config.max_rounds:
            raise MaxRoundsExceededError(self.config.max_rounds)
        self._rounds += 1
        logger.info("Tool round %d/%d: %d calls", self._rounds, self.config.max_rounds, len(batch.tool_calls))

        reply = None
        for index, call in enumerate(batch.tool_calls):
            response = self.dispatcher.handle(call)
            self._tool_calls.append(call)
            reply = self.session.send_tool_response(call, response, batch.text if index == 0 else "")

            if reply.tool_calls:
                if not self.config.complete_batches:
                    # The rest of this batch is dropped in favour of the new one
                    return self._call_functions(reply)
                reply = self._call_functions(reply)

        return reply

    def get_products(self) -> tuple[Product, ...]:
        return self.catalog.get_all()

    def get_visible_products(self) -> tuple[Product, ...]:
        return self.catalog.get_visible()

    def get_cart_snapshot(self) -> tuple[Product, ...]:
        return self.cart.snapshot()

    def get_cart_total(self) -> float:
        return self.cart.total()

    def get_cart_overview(self) -> list[CartOverviewLine]:
        return self.cart.overview()

    def add_to_cart(self, name: str) -> bool:
        return self.cart.add(name)
