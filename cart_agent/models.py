import os
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Product:
    name: str
    price: float
    image: str = ""

    @property
    def key(self) -> str:
        """Case-insensitive identity of the product."""
        return self.name.casefold()

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "price": self.price, "image": self.image}


@dataclass
class CartOverviewLine:
    name: str
    price: float
    quantity: int


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResponse:
    name: str
    result: dict[str, Any]


@dataclass
class Reply:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class AgentResponse:
    tool_calls: list[ToolCall]
    llm_requests: int
    llm_total_time: float
    final_message: str = ""


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AgentConfig:
    max_rounds: int = 10
    max_retries: int = 2
    retry_delay: float = 1.0
    timeout: float = 60.0
    # Keep processing the rest of a call batch after a nested chain finishes
    complete_batches: bool = False

    @classmethod
    def from_env(cls) -> "AgentConfig":
        return cls(
            max_rounds=int(os.getenv("CART_AGENT_MAX_ROUNDS", "10")),
            max_retries=int(os.getenv("CART_AGENT_MAX_RETRIES", "2")),
            retry_delay=float(os.getenv("CART_AGENT_RETRY_DELAY", "1.0")),
            timeout=float(os.getenv("CART_AGENT_TIMEOUT", "60")),
            complete_batches=_env_bool("CART_AGENT_COMPLETE_BATCHES"),
        )
