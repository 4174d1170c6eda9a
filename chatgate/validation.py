"""Request gate run on every chat completion before an engine sees it.

The gate encodes which subset of the OpenAI chat protocol the engines can
actually execute. It only inspects the request: nothing is defaulted,
normalized, or otherwise mutated, so engines receive exactly what the caller
submitted.
"""

from typing import Any, List, Optional

from chatgate.schemas.chat import (
    AssistantMessage,
    ChatCompletionRequest,
    SystemMessage,
    ToolMessage,
    UserMessage,
)

# Bump whenever the tuple below changes so clients caching it can refresh.
UNSUPPORTED_FIELDS_VERSION = "1"

CHAT_COMPLETION_REQUEST_UNSUPPORTED_FIELDS = (
    "model",
    "logit_bias",
    "logprobs",
    "tool_choice",
    "tools",
    "response_format",
    "seed",
    "top_logprobs",
)


class ChatRequestError(Exception):
    """Base class for requests that parse but cannot be executed.

    The API layer maps every subclass to a 400 response carrying the
    message verbatim.
    """

    title = "Invalid Request"


class UnsupportedFieldError(ChatRequestError):
    """Raised when the request carries any field the engines cannot honour."""

    title = "Unsupported Field"

    def __init__(self, fields: List[str]):
        self.fields = list(fields)
        super().__init__(
            "The following fields in ChatCompletionRequest are not yet supported: "
            + ", ".join(self.fields)
        )


class UnsupportedContentError(ChatRequestError):
    """Raised when a user message uses the content-part array form."""

    title = "Unsupported Content"

    def __init__(self, content: Any, index: int):
        self.content = content
        self.index = index
        super().__init__(
            "User message only supports string `content` for now, "
            f"but received: {_describe_content(content)} (messages[{index}])"
        )


class UnsupportedToolCallError(ChatRequestError):
    title = "Unsupported Tool Call"

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"`tool_calls` is not supported yet (messages[{index}]).")


class UnsupportedRoleError(ChatRequestError):
    """Raised for tool messages and for system messages after index 0."""

    title = "Unsupported Role"

    def __init__(self, role: str, index: int, message: str):
        self.role = role
        self.index = index
        super().__init__(message)


class InvalidTerminalRoleError(ChatRequestError):
    title = "Invalid Terminal Role"

    def __init__(self, role: Optional[str]):
        self.role = role
        received = f'"{role}"' if role else "no messages"
        super().__init__(
            f"Last message should be from `user`, but received: {received}."
        )


class InvalidStreamingFanoutError(ChatRequestError):
    title = "Invalid Streaming Fanout"

    def __init__(self, n: int):
        self.n = n
        super().__init__(f"When streaming, `n` cannot be > 1 (received n={n}).")


def _describe_content(content: Any) -> str:
    if isinstance(content, list):
        parts = [
            p.model_dump(exclude_none=True) if hasattr(p, "model_dump") else p
            for p in content
        ]
        return repr(parts)
    return repr(content)


def unsupported_fields_present(request: ChatCompletionRequest) -> List[str]:
    """Return the unsupported fields the caller set, in declaration order.

    Presence is decided by key, not by value: an explicit ``"seed": null``
    in the body still counts.
    """
    present = request.model_fields_set
    return [f for f in CHAT_COMPLETION_REQUEST_UNSUPPORTED_FIELDS if f in present]


def _check_messages(request: ChatCompletionRequest) -> None:
    for index, message in enumerate(request.messages):
        if isinstance(message, UserMessage):
            if not isinstance(message.content, str):
                raise UnsupportedContentError(message.content, index)
        elif isinstance(message, AssistantMessage):
            if message.tool_calls is not None:
                raise UnsupportedToolCallError(index)
        elif isinstance(message, ToolMessage):
            raise UnsupportedRoleError(
                "tool", index, "`tool` and `function` are not supported yet."
            )
        elif isinstance(message, SystemMessage):
            if index != 0:
                raise UnsupportedRoleError(
                    "system",
                    index,
                    "System prompt should always be the first one in `messages` "
                    f"(found at messages[{index}]).",
                )
        else:
            role = getattr(message, "role", type(message).__name__)
            raise UnsupportedRoleError(
                str(role), index, f"Unknown message role: {role}"
            )


def post_init_and_check_fields(request: ChatCompletionRequest) -> None:
    """Reject requests that fall outside the executable subset.

    Checks run in a fixed order so the reported error is deterministic:
    unsupported fields (all of them are listed), per-message shape, the
    role of the last message, then streaming fan-out. Returns ``None`` when
    the request is acceptable.
    """
    unsupported = unsupported_fields_present(request)
    if unsupported:
        raise UnsupportedFieldError(unsupported)

    _check_messages(request)

    if not request.messages or request.messages[-1].role != "user":
        last_role = request.messages[-1].role if request.messages else None
        raise InvalidTerminalRoleError(last_role)

    if request.stream and request.n is not None and request.n > 1:
        raise InvalidStreamingFanoutError(request.n)
