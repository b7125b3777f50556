import json
import os
import uuid
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.config import Config
from openai import OpenAI

from .errors import ConfigurationError, MalformedArgumentsError
from .models import Reply, ToolCall

SUPPORTED_PREFIXES = {
    "ollama/": "Connect to Ollama (default: localhost:11434)",
    "llama.cpp/": "Connect to llama.cpp server (default: localhost:8080)",
    "bedrock/": "Connect to AWS Bedrock",
    "vertex/": "Connect to Google Vertex AI (Gemini models)",
    "vertex-maas/": "Connect to Vertex AI Model Garden MaaS",
}


def _is_api_error(exc: Exception) -> bool:
    """Check if an exception is an API/HTTP failure of the backend round-trip.

    Covers OpenAI SDK errors (used by Ollama, llama.cpp, Vertex MaaS),
    boto3/botocore errors (Bedrock), and Google API errors (Vertex AI).
    """
    # APIStatusError covers 4xx/5xx, APIConnectionError covers network
    # failures and timeouts
    try:
        from openai import APIConnectionError, APIStatusError
        if isinstance(exc, (APIStatusError, APIConnectionError)):
            return True
    except ImportError:
        pass

    try:
        from botocore.exceptions import ClientError, EndpointConnectionError, HTTPClientError, NoCredentialsError
        if isinstance(exc, (ClientError, EndpointConnectionError, HTTPClientError, NoCredentialsError)):
            return True
    except ImportError:
        pass

    try:
        from google.api_core.exceptions import GoogleAPIError
        if isinstance(exc, GoogleAPIError):
            return True
    except ImportError:
        pass

    return False


def _parse_arguments(tool_name: str, raw: Any) -> dict[str, Any]:
    """Decode call arguments, which arrive as a JSON string or an object."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedArgumentsError(tool_name, f"arguments are not valid JSON ({e})") from e
    if not isinstance(raw, dict):
        raise MalformedArgumentsError(tool_name, "arguments must be an object")
    return raw


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


class OpenAIChatClient:
    """Any OpenAI-compatible chat completions endpoint."""

    def __init__(self, model: str, api_key: str, base_url: str, timeout: float = 60.0, http_client=None):
        # Retries are handled by the chat session
        self.client = OpenAI(api_key=api_key, base_url=base_url, max_retries=0, http_client=http_client)
        self.model = model
        self.timeout = timeout

    def create_completion(self, messages: list[dict], tools: list[dict]) -> Reply:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            tools=tools,
            timeout=self.timeout,
        )
        message = response.choices[0].message

        tool_calls = []
        for tc in message.tool_calls or []:
            tool_calls.append(ToolCall(
                id=tc.id or _new_call_id(),
                name=tc.function.name,
                arguments=_parse_arguments(tc.function.name, tc.function.arguments),
            ))
        return Reply(text=message.content or "", tool_calls=tool_calls)


def to_bedrock_tools(tools: list[dict]) -> list[dict]:
    """Convert OpenAI tool format to Bedrock format."""
    bedrock_tools = []
    for tool in tools:
        func = tool["function"]
        bedrock_tools.append({
            "toolSpec": {
                "name": func["name"],
                "description": func["description"],
                "inputSchema": {
                    "json": func.get("parameters", {"type": "object", "properties": {}})
                }
            }
        })
    return bedrock_tools


def _append_turn(turns: list[dict], role: str, content: list) -> None:
    # Converse needs alternating roles; fold repeats into the previous turn
    if turns and turns[-1]["role"] == role:
        turns[-1]["content"].extend(content)
    else:
        turns.append({"role": role, "content": content})


def to_bedrock_messages(messages: list[dict]) -> tuple[list[dict], list[dict]]:
    """Convert OpenAI-style messages to Bedrock system prompts and messages."""
    bedrock_messages = []
    system_prompts = []
    i = 0

    while i < len(messages):
        msg = messages[i]
        role = msg["role"]
        content = msg.get("content") or ""

        if role == "system":
            system_prompts.append({"text": content})
            i += 1
        elif role == "user":
            _append_turn(bedrock_messages, "user", [{"text": content}])
            i += 1
        elif role == "assistant":
            bedrock_content = []
            if content:
                bedrock_content.append({"text": content})
            for tc in msg.get("tool_calls") or []:
                func = tc["function"]
                bedrock_content.append({
                    "toolUse": {
                        "toolUseId": tc["id"],
                        "name": func["name"],
                        "input": _parse_arguments(func["name"], func["arguments"])
                    }
                })
            if bedrock_content:
                _append_turn(bedrock_messages, "assistant", bedrock_content)
            i += 1
        elif role == "tool":
            # Accumulate all consecutive tool results into one user message
            tool_results = []
            while i < len(messages) and messages[i]["role"] == "tool":
                tool_msg = messages[i]
                tool_results.append({
                    "toolResult": {
                        "toolUseId": tool_msg["tool_call_id"],
                        "content": [{"text": tool_msg["content"]}]
                    }
                })
                i += 1

            _append_turn(bedrock_messages, "user", tool_results)
        else:
            i += 1

    return system_prompts, bedrock_messages


class BedrockClient:
    """Bedrock client for Converse API with tool calling."""

    def __init__(self, model_id: str, timeout: float = 60.0):
        self.client = boto3.client(
            "bedrock-runtime",
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            region_name=os.getenv("AWS_REGION", "us-east-1"),
            # Retries are handled by the chat session
            config=Config(read_timeout=timeout, retries={"total_max_attempts": 1}),
        )
        self.model_id = model_id

    def create_completion(self, messages: list[dict], tools: list[dict]) -> Reply:
        system_prompts, bedrock_messages = to_bedrock_messages(messages)

        kwargs = {
            "modelId": self.model_id,
            "messages": bedrock_messages,
            "toolConfig": {"tools": to_bedrock_tools(tools)}
        }

        if system_prompts:
            kwargs["system"] = system_prompts

        response = self.client.converse(**kwargs)
        return parse_bedrock_output(response["output"]["message"])


def parse_bedrock_output(output: dict) -> Reply:
    text = ""
    tool_calls = []

    for item in output["content"]:
        if "text" in item:
            text = item["text"]
        elif "toolUse" in item:
            tool_use = item["toolUse"]
            tool_calls.append(ToolCall(
                id=tool_use.get("toolUseId") or _new_call_id(),
                name=tool_use["name"],
                arguments=_parse_arguments(tool_use["name"], tool_use.get("input"))
            ))

    return Reply(text=text, tool_calls=tool_calls)


class VertexAIClient:
    """Vertex AI client for Gemini models with tool calling."""

    def __init__(self, model_id: str):
        import vertexai

        project = os.getenv("GOOGLE_CLOUD_PROJECT") or os.getenv("GCLOUD_PROJECT")
        location = os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1")

        vertexai.init(project=project, location=location)

        self.model_id = model_id

    def _convert_tools(self, tools: list[dict]):
        """Convert OpenAI tool format to Vertex AI format."""
        from vertexai.generative_models import FunctionDeclaration, Tool as VertexTool

        declarations = []
        for tool in tools:
            func = tool["function"]
            declarations.append(FunctionDeclaration(
                name=func["name"],
                description=func["description"],
                parameters=func.get("parameters", {"type": "object", "properties": {}})
            ))
        return [VertexTool(function_declarations=declarations)]

    def create_completion(self, messages: list[dict], tools: list[dict]) -> Reply:
        from vertexai.generative_models import GenerativeModel

        system_instruction, contents = to_vertex_contents(messages)

        if system_instruction:
            model = GenerativeModel(self.model_id, system_instruction=system_instruction)
        else:
            model = GenerativeModel(self.model_id)

        response = model.generate_content(contents=contents, tools=self._convert_tools(tools))
        return parse_vertex_parts(response.candidates[0].content.parts)


def to_vertex_contents(messages: list[dict]):
    """Convert OpenAI message format to Vertex AI system instruction and contents."""
    from vertexai.generative_models import Content, Part

    system_instruction = None
    turns: list[tuple[str, list]] = []
    tool_id_to_name = {}

    def add(role, parts):
        # Gemini needs alternating roles; fold repeats into the previous turn
        if turns and turns[-1][0] == role:
            turns[-1][1].extend(parts)
        else:
            turns.append((role, parts))

    i = 0
    while i < len(messages):
        msg = messages[i]
        role = msg["role"]
        content = msg.get("content") or ""

        if role == "system":
            system_instruction = content
            i += 1
        elif role == "user":
            add("user", [Part.from_text(content)])
            i += 1
        elif role == "assistant":
            parts = []
            if content:
                parts.append(Part.from_text(content))
            for tc in msg.get("tool_calls") or []:
                func_name = tc["function"]["name"]
                tool_id_to_name[tc["id"]] = func_name
                args = _parse_arguments(func_name, tc["function"]["arguments"])
                parts.append(Part.from_dict({"function_call": {"name": func_name, "args": args}}))
            if parts:
                add("model", parts)
            i += 1
        elif role == "tool":
            parts = []
            while i < len(messages) and messages[i]["role"] == "tool":
                tool_msg = messages[i]
                func_name = tool_id_to_name.get(tool_msg["tool_call_id"], "unknown")
                parts.append(Part.from_function_response(
                    name=func_name,
                    response=json.loads(tool_msg["content"])
                ))
                i += 1

            add("user", parts)
        else:
            i += 1

    contents = [Content(role=role, parts=parts) for role, parts in turns]
    return system_instruction, contents


def parse_vertex_parts(parts) -> Reply:
    text = ""
    tool_calls = []

    for part in parts:
        if part.function_call and part.function_call.name:
            fc = part.to_dict().get("function_call", {})
            tool_calls.append(ToolCall(
                id=_new_call_id(),
                name=fc["name"],
                arguments=_parse_arguments(fc["name"], fc.get("args"))
            ))
        elif part.text:
            text += part.text

    return Reply(text=text, tool_calls=tool_calls)


@dataclass
class BackendInfo:
    client: Any
    backend_type: str
    model: str
    base_url: str


def create_client(model: str, api_key: str = "", base_url: str = "", host: str = "localhost",
                  timeout: float = 60.0) -> BackendInfo:
    """Pick the backend from the model prefix, e.g. ``ollama/llama3.2``."""
    model = model or ""

    if model.startswith("bedrock/"):
        bedrock_model = model.removeprefix("bedrock/")
        return BackendInfo(BedrockClient(bedrock_model, timeout=timeout), "bedrock", bedrock_model, base_url)

    if model.startswith("vertex/"):
        vertex_model = model.removeprefix("vertex/")
        return BackendInfo(VertexAIClient(vertex_model), "vertex", vertex_model, "Vertex AI API")

    if model.startswith("vertex-maas/"):
        import google.auth
        import google.auth.transport.requests

        maas_model = model.removeprefix("vertex-maas/")
        credentials, default_project = google.auth.default()
        credentials.refresh(google.auth.transport.requests.Request())

        project = os.getenv("GOOGLE_CLOUD_PROJECT") or os.getenv("GCLOUD_PROJECT") or default_project
        location = os.getenv("VERTEX_MAAS_LOCATION") or os.getenv("GOOGLE_CLOUD_LOCATION", "global")
        if location == "global":
            maas_url = f"https://aiplatform.googleapis.com/v1/projects/{project}/locations/global/endpoints/openapi"
        else:
            maas_url = f"https://{location}-aiplatform.googleapis.com/v1/projects/{project}/locations/{location}/endpoints/openapi"

        client = OpenAIChatClient(maas_model, credentials.token, maas_url, timeout=timeout)
        return BackendInfo(client, "vertex-maas", maas_model, maas_url)

    if model.startswith("llama.cpp/"):
        actual_model = model.removeprefix("llama.cpp/")
        llama_cpp_url = f"http://{host}:8080/v1"
        client = OpenAIChatClient(actual_model, api_key or "not-needed", llama_cpp_url, timeout=timeout)
        return BackendInfo(client, "llama.cpp", actual_model, llama_cpp_url)

    if model.startswith("ollama/"):
        actual_model = model.removeprefix("ollama/")
        ollama_url = f"http://{host}:11434/v1"
        client = OpenAIChatClient(actual_model, api_key or "ollama", ollama_url, timeout=timeout)
        return BackendInfo(client, "ollama", actual_model, ollama_url)

    raise ConfigurationError(f"No valid model prefix in {model!r}; expected one of {', '.join(SUPPORTED_PREFIXES)}")
