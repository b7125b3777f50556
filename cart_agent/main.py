#!/usr/bin/env python3
import argparse
import logging
import os
import time

from .agent import ShoppingAgent
from .backends import SUPPORTED_PREFIXES, create_client
from .errors import ConfigurationError, ShoppingAgentError
from .models import AgentConfig


def print_cart(agent: ShoppingAgent):
    """Print the cart header line."""
    print(f"🛒 Cart: {len(agent.get_cart_snapshot())} - ${agent.get_cart_total():.2f}")


def print_cart_overview(agent: ShoppingAgent):
    print("\nCart Overview")
    overview = agent.get_cart_overview()
    if not overview:
        print("  Your cart is empty.")
    for line in overview:
        print(f"  {line.name} (x{line.quantity}) - ${line.price:.2f} each")
    print_cart(agent)


def print_products(agent: ShoppingAgent):
    print("\nProducts")
    for product in agent.get_visible_products():
        print(f"  {product.name:<10} ${product.price:.2f}")
    if agent.catalog.filter_criteria:
        print(f"  (filtered to {len(agent.get_visible_products())} of {len(agent.get_products())})")


def answer(agent: ShoppingAgent, prompt: str) -> bool:
    """Ask one question and print the reply. Returns False if it failed."""
    start = time.time()
    try:
        response = agent.run(prompt)
    except ShoppingAgentError as e:
        print(f"❌ ERROR: {e}")
        return False
    elapsed = time.time() - start

    for i, tc in enumerate(response.tool_calls, 1):
        print(f"  [{i}] {tc.name}({tc.arguments})")
    print(f"🤖 {response.final_message}")
    print(f"   {response.llm_requests} requests, {elapsed:.2f}s")
    print_cart(agent)
    return True


def wait_for_server(base_url: str, server_name: str, timeout: int = 30):
    """Wait for a local server to be ready."""
    import urllib.request
    import urllib.error

    if "/v1" in base_url:
        health_url = base_url.replace("/v1", "")
    else:
        health_url = base_url

    print(f"⏳ Waiting for {server_name} at {health_url}...")

    start = time.time()
    while time.time() - start < timeout:
        try:
            urllib.request.urlopen(health_url, timeout=2)
            print(f"✅ {server_name} is ready")
            return True
        except (urllib.error.URLError, ConnectionError):
            time.sleep(1)

    print(f"❌ {server_name} not ready after {timeout}s")
    return False


def print_usage():
    print("Usage: python3 run.py --model <prefix>/<model-name> [--host <hostname>]\n")
    print("Supported prefixes:")
    for prefix, description in SUPPORTED_PREFIXES.items():
        print(f"  {prefix + '<model>':<24} - {description}")
    print("\nExamples:")
    print("  python3 run.py --model 'ollama/llama3.2'")
    print("  python3 run.py --model 'ollama/qwen3:8b' --host myserver.local")
    print("  python3 run.py --model 'bedrock/anthropic.claude-3-5-sonnet-20241022-v2:0'")
    print("  python3 run.py --model 'vertex/gemini-2.0-flash' --prompt 'Add two apples'")


def main(argv: list[str] | None = None):
    config = AgentConfig.from_env()

    parser = argparse.ArgumentParser(description="Conversational shopping assistant")
    parser.add_argument("--api-key", default=os.getenv("OPENAI_API_KEY", ""))
    parser.add_argument("--base-url", default=os.getenv("OPENAI_BASE_URL", ""))
    parser.add_argument("--model", default=os.getenv("OPENAI_MODEL", ""))
    parser.add_argument("--host", default="localhost", help="Hostname for Ollama/llama.cpp backends (default: localhost)")
    parser.add_argument("--wait-timeout", type=int, default=30, help="Seconds to wait for a local server")
    parser.add_argument("--prompt", action="append", default=[], help="Ask this and exit (repeatable)")
    parser.add_argument("--max-rounds", type=int, default=config.max_rounds)
    parser.add_argument("--complete-batches", action="store_true", default=config.complete_batches,
                        help="Finish every call batch even after a nested call chain")
    parser.add_argument("--verbose", action="store_true")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    config.max_rounds = args.max_rounds
    config.complete_batches = args.complete_batches

    try:
        backend = create_client(args.model, args.api_key, args.base_url, host=args.host, timeout=config.timeout)
    except ConfigurationError as e:
        print(f"❌ Error: {e}\n")
        print_usage()
        return 2

    if backend.backend_type in ("llama.cpp", "ollama"):
        if not wait_for_server(backend.base_url, backend.backend_type, args.wait_timeout):
            print(f"\n💡 Tip: start the {backend.backend_type} server in another terminal")
            return 1

    agent = ShoppingAgent(backend.client, config)

    print(f"🚀 Shopping assistant")
    print(f"   Backend: {backend.backend_type}")
    print(f"   Base URL: {backend.base_url}")
    print(f"   Model: {backend.model}\n")

    if args.prompt:
        ok = all([answer(agent, prompt) for prompt in args.prompt])
        return 0 if ok else 1

    print("Ask the shopping helper a question. Commands: /cart /products /clear /quit")
    while True:
        try:
            prompt = input("\n> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return 0

        if not prompt:
            continue
        if prompt in ("/quit", "/exit"):
            return 0
        if prompt == "/cart":
            print_cart_overview(agent)
        elif prompt == "/products":
            print_products(agent)
        elif prompt == "/clear":
            agent.cart.clear()
            print_cart(agent)
        else:
            answer(agent, prompt)


if __name__ == "__main__":
    raise SystemExit(main())
