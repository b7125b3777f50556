from cart_agent.models import Reply, ToolCall


class ScriptedClient:
    """Backend stand-in that replays canned replies and records every request."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def create_completion(self, messages, tools):
        self.requests.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def call(name, call_id=None, **arguments):
    return ToolCall(id=call_id or f"call_{name}", name=name, arguments=arguments)


def products(*names):
    return [{"name": n} for n in names]


def text(message):
    return Reply(text=message)


def calls(*tool_calls):
    return Reply(tool_calls=list(tool_calls))


