import json
from types import SimpleNamespace

import httpx
import pytest
from botocore.exceptions import ClientError
from openai import APIConnectionError

from cart_agent.agent import ShoppingAgent
from cart_agent.backends import (
    BedrockClient,
    OpenAIChatClient,
    _is_api_error,
    _parse_arguments,
    create_client,
    parse_bedrock_output,
    parse_vertex_parts,
    to_bedrock_messages,
    to_bedrock_tools,
    to_vertex_contents,
)
from cart_agent.errors import BackendUnavailableError, ConfigurationError, MalformedArgumentsError
from cart_agent.models import AgentConfig
from cart_agent.tools import TOOLS

from helpers import ScriptedClient, call, calls, products, text


def test_bedrock_tools_keep_names_and_schemas():
    converted = to_bedrock_tools(TOOLS)
    assert [t["toolSpec"]["name"] for t in converted] == [t["function"]["name"] for t in TOOLS]
    add = next(t for t in converted if t["toolSpec"]["name"] == "addToCart")
    assert "productsToAdd" in add["toolSpec"]["inputSchema"]["json"]["properties"]


# a transcript with an intermediate text reply must still alternate roles
def test_bedrock_messages_alternate_roles():
    client = ScriptedClient([
        calls(call("addToCart", "t1", productsToAdd=products("Apple")), call("getNumberOfProducts", "t2")),
        text("Added an apple."),
        text("We carry 10 products."),
    ])
    agent = ShoppingAgent(client)
    agent.ask("add an apple and count products")

    system, messages = to_bedrock_messages(agent.session.history)

    assert len(system) == 1
    roles = [m["role"] for m in messages]
    assert all(a != b for a, b in zip(roles, roles[1:]))
    assert roles[0] == "user" and roles[-1] == "assistant"

    tool_uses = [c["toolUse"]["toolUseId"] for m in messages for c in m["content"] if "toolUse" in c]
    tool_results = [c["toolResult"]["toolUseId"] for m in messages for c in m["content"] if "toolResult" in c]
    assert tool_uses == tool_results == ["t1", "t2"]

    first_result = next(c for m in messages for c in m["content"] if "toolResult" in c)
    assert json.loads(first_result["toolResult"]["content"][0]["text"]) == {"numberOfProductsAdded": 1}


def test_parse_bedrock_output():
    reply = parse_bedrock_output({
        "content": [
            {"text": "Let me add that."},
            {"toolUse": {"toolUseId": "b1", "name": "addToCart", "input": {"productsToAdd": [{"name": "Milk"}]}}},
        ]
    })
    assert reply.text == "Let me add that."
    assert reply.tool_calls[0].id == "b1"
    assert reply.tool_calls[0].arguments == {"productsToAdd": [{"name": "Milk"}]}


def test_openai_client_parses_tool_calls(monkeypatch):
    client = OpenAIChatClient("llama3.2", "ollama", "http://localhost:11434/v1")
    message = SimpleNamespace(
        content=None,
        tool_calls=[SimpleNamespace(
            id="o1",
            function=SimpleNamespace(name="removeFromCart", arguments='{"productsToRemove": [{"name": "Eggs"}]}'),
        )],
    )
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    monkeypatch.setattr(client.client.chat.completions, "create", fake_create)
    reply = client.create_completion([{"role": "user", "content": "drop eggs"}], TOOLS)

    assert reply.text == ""
    assert reply.tool_calls[0].name == "removeFromCart"
    assert reply.tool_calls[0].arguments == {"productsToRemove": [{"name": "Eggs"}]}
    assert captured["model"] == "llama3.2"
    assert captured["tools"] is TOOLS


def test_parse_arguments():
    assert _parse_arguments("getProducts", "") == {}
    assert _parse_arguments("getProducts", None) == {}
    assert _parse_arguments("addToCart", '{"productsToAdd": []}') == {"productsToAdd": []}
    with pytest.raises(MalformedArgumentsError):
        _parse_arguments("addToCart", "{not json")
    with pytest.raises(MalformedArgumentsError):
        _parse_arguments("addToCart", "[1, 2]")


def test_create_client_routes_by_prefix():
    ollama = create_client("ollama/llama3.2", host="gpu-box")
    assert ollama.backend_type == "ollama"
    assert ollama.model == "llama3.2"
    assert ollama.base_url == "http://gpu-box:11434/v1"
    assert isinstance(ollama.client, OpenAIChatClient)

    llama = create_client("llama.cpp/my-model")
    assert llama.base_url == "http://localhost:8080/v1"

    bedrock = create_client("bedrock/amazon.nova-micro-v1:0")
    assert bedrock.backend_type == "bedrock"
    assert isinstance(bedrock.client, BedrockClient)
    assert bedrock.client.model_id == "amazon.nova-micro-v1:0"


@pytest.mark.parametrize("model", ["", "gpt-4o", "anthropic/claude"])
def test_create_client_rejects_unknown_prefix(model):
    with pytest.raises(ConfigurationError):
        create_client(model)


def test_is_api_error():
    assert _is_api_error(APIConnectionError(request=httpx.Request("POST", "http://localhost:11434/v1")))
    assert _is_api_error(ClientError({"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "Converse"))
    assert not _is_api_error(ValueError("bug"))
    assert not _is_api_error(KeyError("choices"))


# the chat session is the only retry layer: 1 try + 2 retries = 3 HTTP attempts
def test_openai_client_does_not_retry_on_its_own():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(503, json={"error": {"message": "unavailable"}})

    client = OpenAIChatClient(
        "llama3.2", "ollama", "http://localhost:11434/v1",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    agent = ShoppingAgent(client, AgentConfig(max_retries=2, retry_delay=0))

    with pytest.raises(BackendUnavailableError):
        agent.ask("hi")
    assert len(attempts) == 3


# a two-call batch must still alternate user/model turns for Gemini
def test_vertex_contents_alternate_roles():
    pytest.importorskip("vertexai.generative_models")
    client = ScriptedClient([
        calls(call("addToCart", "t1", productsToAdd=products("Apple")), call("getNumberOfProducts", "t2")),
        text("Added an apple."),
        text("We carry 10 products."),
    ])
    agent = ShoppingAgent(client)
    agent.ask("add an apple and count products")

    system, contents = to_vertex_contents(agent.session.history)

    assert system == agent.session.history[0]["content"]
    roles = [c.role for c in contents]
    assert all(a != b for a, b in zip(roles, roles[1:]))
    assert roles[0] == "user" and roles[-1] == "model"

    responses = [
        part.to_dict()["function_response"]
        for c in contents for part in c.parts
        if "function_response" in part.to_dict()
    ]
    assert [r["name"] for r in responses] == ["addToCart", "getNumberOfProducts"]
    assert responses[0]["response"] == {"numberOfProductsAdded": 1}
    assert responses[1]["response"] == {"numberOfItems": 10}


def test_parse_vertex_parts():
    generative_models = pytest.importorskip("vertexai.generative_models")
    Part = generative_models.Part
    reply = parse_vertex_parts([
        Part.from_text("Checking the cart."),
        Part.from_dict({"function_call": {"name": "removeFromCart", "args": {"productsToRemove": [{"name": "Eggs"}]}}}),
    ])
    assert reply.text == "Checking the cart."
    assert reply.tool_calls[0].name == "removeFromCart"
    assert reply.tool_calls[0].arguments == {"productsToRemove": [{"name": "Eggs"}]}
    assert reply.tool_calls[0].id.startswith("call_")
