from pydantic import BaseModel, ConfigDict
from typing import List, Literal, Optional

from chatgate.schemas.chat import ToolCall

# "abort" is reserved for caller-initiated cancellation
FinishReason = Literal["stop", "length", "tool_calls", "abort"]


class _ResponseModel(BaseModel):
    # Produced once by an engine, read-only afterwards
    model_config = ConfigDict(frozen=True)


class TopLogprob(_ResponseModel):
    token: str
    bytes: Optional[List[int]] = None
    logprob: float


class ChatCompletionTokenLogprob(_ResponseModel):
    token: str
    bytes: Optional[List[int]] = None
    logprob: float
    top_logprobs: List[TopLogprob] = []


class ChoiceLogprobs(_ResponseModel):
    content: Optional[List[ChatCompletionTokenLogprob]] = None


class ChatCompletionMessage(_ResponseModel):
    role: Literal["assistant"] = "assistant"
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None


class Choice(_ResponseModel):
    index: int
    finish_reason: FinishReason
    message: ChatCompletionMessage
    logprobs: Optional[ChoiceLogprobs] = None


class CompletionUsage(_ResponseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatCompletion(_ResponseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    system_fingerprint: Optional[str] = None
    usage: Optional[CompletionUsage] = None


class DeltaToolCallFunction(_ResponseModel):
    name: Optional[str] = None
    arguments: Optional[str] = None


class DeltaToolCall(_ResponseModel):
    index: int
    id: Optional[str] = None
    type: Optional[Literal["function"]] = None
    function: Optional[DeltaToolCallFunction] = None


class Delta(_ResponseModel):
    role: Optional[Literal["system", "user", "assistant", "tool"]] = None
    content: Optional[str] = None
    tool_calls: Optional[List[DeltaToolCall]] = None


class ChunkChoice(_ResponseModel):
    index: int
    delta: Delta
    finish_reason: Optional[FinishReason] = None
    logprobs: Optional[ChoiceLogprobs] = None


class ChatCompletionChunk(_ResponseModel):
    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int
    model: str
    choices: List[ChunkChoice]
    system_fingerprint: Optional[str] = None
