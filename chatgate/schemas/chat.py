from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, Dict, List, Literal, Optional, Union


class _RequestModel(BaseModel):
    # Inbound shapes are closed and read-only once parsed
    model_config = ConfigDict(extra="forbid", frozen=True)


class TextContentPart(_RequestModel):
    type: Literal["text"]
    text: str


class ImageURL(_RequestModel):
    url: str
    detail: Optional[Literal["auto", "low", "high"]] = None


class ImageContentPart(_RequestModel):
    type: Literal["image_url"]
    image_url: ImageURL


ContentPart = Annotated[
    Union[TextContentPart, ImageContentPart], Field(discriminator="type")
]


class ToolCallFunction(_RequestModel):
    name: str
    # JSON-encoded, never parsed here
    arguments: str


class ToolCall(_RequestModel):
    id: str
    type: Literal["function"]
    function: ToolCallFunction


class SystemMessage(_RequestModel):
    role: Literal["system"]
    content: str


class UserMessage(_RequestModel):
    role: Literal["user"]
    content: Union[str, List[ContentPart]]
    name: Optional[str] = None


class AssistantMessage(_RequestModel):
    role: Literal["assistant"]
    content: Optional[str] = None
    name: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None


class ToolMessage(_RequestModel):
    role: Literal["tool"]
    content: str
    tool_call_id: str


Message = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]

MESSAGE_ROLES = ("system", "user", "assistant", "tool")


class FunctionDefinition(_RequestModel):
    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, object]] = None


class ChatCompletionTool(_RequestModel):
    type: Literal["function"]
    function: FunctionDefinition


class NamedToolChoiceFunction(_RequestModel):
    name: str


class ChatCompletionNamedToolChoice(_RequestModel):
    type: Literal["function"]
    function: NamedToolChoiceFunction


ToolChoice = Union[Literal["none", "auto", "required"], ChatCompletionNamedToolChoice]


class ResponseFormat(_RequestModel):
    type: Optional[Literal["text", "json_object", "json_schema"]] = None
    json_schema: Optional[Dict[str, object]] = None


class ChatCompletionRequest(_RequestModel):
    messages: List[Message]
    # Generation parameters understood by the engines
    stream: Optional[bool] = False
    n: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    max_gen_len: Optional[int] = None
    stop: Optional[Union[str, List[str]]] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    # Accepted on the wire for compatibility, rejected by the validator
    model: Optional[str] = None
    logit_bias: Optional[Dict[str, float]] = None
    logprobs: Optional[bool] = None
    top_logprobs: Optional[int] = None
    seed: Optional[int] = None
    tool_choice: Optional[ToolChoice] = None
    tools: Optional[List[ChatCompletionTool]] = None
    response_format: Optional[ResponseFormat] = None
