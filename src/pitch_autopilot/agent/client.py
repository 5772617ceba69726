"""Content-generation service interface and its Anthropic implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import anthropic

logger = logging.getLogger(__name__)


class ContentServiceError(RuntimeError):
    """Content-service call failed; ``transient`` hints whether a retry may help."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(slots=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True)
class ContentBlock:
    """One response block: plain text or a tool-call request."""

    type: str
    text: str = ""
    id: str | None = None
    name: str | None = None
    input: dict[str, Any] = field(default_factory=dict)

    def to_message_param(self) -> dict[str, Any]:
        if self.type == "tool_use":
            return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}
        return {"type": "text", "text": self.text}


@dataclass(slots=True)
class ContentRequest:
    system: str
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] = field(default_factory=list)
    max_tokens: int | None = None


@dataclass(slots=True)
class ContentResponse:
    stop_reason: str | None
    blocks: list[ContentBlock]
    usage: Usage
    model: str

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.blocks if block.type == "text")

    @property
    def tool_calls(self) -> list[ContentBlock]:
        return [block for block in self.blocks if block.type == "tool_use"]


class ContentService(Protocol):
    """Opaque turn-level capability: transcript and tools in, blocks and usage out."""

    model: str

    def create(self, request: ContentRequest) -> ContentResponse:
        """Run one turn."""


class AnthropicContentService:
    """Messages API adapter."""

    def __init__(
        self,
        *,
        model: str,
        max_tokens: int = 8_192,
        client: anthropic.Anthropic | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = client

    def create(self, request: ContentRequest) -> ContentResponse:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": request.max_tokens or self.max_tokens,
            "system": request.system,
            "messages": request.messages,
        }
        if request.tools:
            kwargs["tools"] = request.tools

        try:
            response = self._get_client().messages.create(**kwargs)
        except (anthropic.APIConnectionError, anthropic.RateLimitError) as error:
            raise ContentServiceError(
                f"Content service unavailable: {error}",
                transient=True,
            ) from error
        except anthropic.APIStatusError as error:
            raise ContentServiceError(
                f"Content service returned HTTP {error.status_code}: {error.message}",
                transient=error.status_code >= 500,
            ) from error

        blocks: list[ContentBlock] = []
        for block in response.content:
            if block.type == "text":
                blocks.append(ContentBlock(type="text", text=block.text))
            elif block.type == "tool_use":
                blocks.append(
                    ContentBlock(
                        type="tool_use",
                        id=block.id,
                        name=block.name,
                        input=dict(block.input) if isinstance(block.input, dict) else {},
                    ),
                )
            else:
                logger.debug("Ignoring content block of type %s", block.type)

        return ContentResponse(
            stop_reason=response.stop_reason,
            blocks=blocks,
            usage=Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
            model=response.model or self.model,
        )

    def _get_client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic()
        return self._client
