"""BaseAgent: shared LLM call logic, JSON parsing, cost tracking.

Every LLM-backed collaborator of the pipeline (classifier, extraction
agents, judgment backend) sends page images plus a text instruction to a
vision model through this class.

Providers supported:
  - google (Gemini Flash / Pro)
  - anthropic (Claude via direct API or Vertex AI)

The provider SDK clients are synchronous; ``acall_llm`` runs them in a
worker thread so the pipeline's event loop keeps serving the other tier.
"""

from __future__ import annotations

import asyncio
import base64
import json
import os
import time
from dataclasses import dataclass
from typing import Any

import structlog

from autopilot.core.config import settings
from autopilot.modules.processing.agents.sanitizer import strip_code_fences
from autopilot.modules.processing.cost_tracker import CostTracker
from autopilot.modules.processing.schemas import PageImage

logger = structlog.get_logger()

# Default models per provider and tier
DEFAULT_MODELS: dict[str, dict[str, str]] = {
    "google": {"fast": "gemini-2.5-flash", "expert": "gemini-2.5-pro"},
    "anthropic": {"fast": "claude-haiku-4-5", "expert": "claude-sonnet-4@20250514"},
}


def default_model(provider: str, tier: str = "expert") -> str:
    return DEFAULT_MODELS.get(provider, {}).get(tier, "")


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0


class BaseAgent:
    """Base class for all LLM-backed agents.

    Subclasses set ``agent_name`` and build their prompts; this class owns
    the provider clients, the page-image encoding and the per-stage cost
    records.
    """

    agent_name: str = "base"

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        cost_tracker: CostTracker | None = None,
        *,
        tier: str = "expert",
    ) -> None:
        self.provider = provider or settings.extraction_provider
        self.model = model or default_model(self.provider, tier)
        self.tier = tier
        self.cost_tracker = cost_tracker

        # Lazy-initialized clients
        self._gemini_client: Any = None
        self._anthropic_client: Any = None
        self._is_vertex = False

        logger.info(
            f"{self.agent_name}: initialized",
            provider=self.provider,
            model=self.model,
            tier=tier,
        )

    # ------------------------------------------------------------------
    # LLM client builders (lazy)
    # ------------------------------------------------------------------

    def _get_gemini_client(self) -> Any:
        """Get or create the Gemini client."""
        if self._gemini_client is None:
            from google import genai
            from google.genai import types as genai_types

            self._gemini_client = genai.Client(
                api_key=settings.google_ai_api_key,
                http_options=genai_types.HttpOptions(timeout=settings.llm_timeout_seconds * 1000),
            )
        return self._gemini_client

    def _get_anthropic_client(self) -> Any:
        """Get or create the Anthropic client (direct or Vertex AI)."""
        if self._anthropic_client is None:
            import anthropic

            if settings.vertex_credentials_path:
                os.environ.setdefault(
                    "GOOGLE_APPLICATION_CREDENTIALS",
                    settings.vertex_credentials_path,
                )
                self._anthropic_client = anthropic.AnthropicVertex(
                    project_id=settings.vertex_project_id,
                    region=settings.vertex_location,
                    timeout=settings.llm_timeout_seconds,
                )
                self._is_vertex = True
            else:
                self._anthropic_client = anthropic.Anthropic(
                    api_key=settings.anthropic_api_key,
                    timeout=settings.llm_timeout_seconds,
                )
                self._is_vertex = False

        return self._anthropic_client

    # ------------------------------------------------------------------
    # Unified LLM call
    # ------------------------------------------------------------------

    async def acall_llm(
        self,
        system_prompt: str,
        user_content: str,
        images: list[PageImage] | None = None,
        *,
        response_json: bool = True,
        stage: str = "",
        doc_type: str = "",
    ) -> dict[str, Any]:
        """``call_llm`` without blocking the event loop."""
        return await asyncio.to_thread(
            self.call_llm,
            system_prompt,
            user_content,
            images,
            response_json=response_json,
            stage=stage,
            doc_type=doc_type,
        )

    def call_llm(
        self,
        system_prompt: str,
        user_content: str,
        images: list[PageImage] | None = None,
        *,
        response_json: bool = True,
        stage: str = "",
        doc_type: str = "",
        temperature: float = 0.0,
    ) -> dict[str, Any]:
        """Call the configured LLM provider and return parsed result + metadata.

        Returns:
            {
                "content": str | dict,  # Raw text or parsed JSON
                "input_tokens": int,
                "output_tokens": int,
                "duration_ms": int,
                "provider": str,
                "model": str,
            }
        """
        if self.provider == "google":
            return self._call_gemini(
                system_prompt, user_content, images or [],
                response_json=response_json,
                stage=stage,
                doc_type=doc_type,
                temperature=temperature,
            )
        elif self.provider == "anthropic":
            return self._call_anthropic(
                system_prompt, user_content, images or [],
                response_json=response_json,
                stage=stage,
                doc_type=doc_type,
                temperature=temperature,
            )
        else:
            raise ValueError(f"Unsupported provider: {self.provider}")

    def _call_gemini(
        self,
        system_prompt: str,
        user_content: str,
        images: list[PageImage],
        *,
        response_json: bool = True,
        stage: str = "",
        doc_type: str = "",
        temperature: float = 0.0,
    ) -> dict[str, Any]:
        from google.genai import types

        client = self._get_gemini_client()
        start = time.time()

        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=temperature,
            response_mime_type="application/json" if response_json else None,
        )
        parts: list[Any] = [types.Part.from_bytes(data=page.data, mime_type=page.media_type) for page in images]
        response = client.models.generate_content(
            model=self.model,
            contents=[*parts, user_content],
            config=config,
        )

        usage = response.usage_metadata
        return self._finish(
            "google",
            response.text or "",
            start,
            pages=len(images),
            usage=TokenUsage(
                input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
                output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
                cache_read_tokens=getattr(usage, "cached_content_token_count", 0) or 0,
            ),
            response_json=response_json,
            stage=stage,
            doc_type=doc_type,
        )

    def _call_anthropic(
        self,
        system_prompt: str,
        user_content: str,
        images: list[PageImage],
        *,
        response_json: bool = True,
        stage: str = "",
        doc_type: str = "",
        temperature: float = 0.0,
    ) -> dict[str, Any]:
        client = self._get_anthropic_client()
        start = time.time()

        # Vertex does not take cache_control on system blocks
        system: Any = system_prompt
        if not self._is_vertex:
            system = [{"type": "text", "text": system_prompt, "cache_control": {"type": "ephemeral"}}]

        blocks: list[dict[str, Any]] = [_anthropic_image_block(page) for page in images]
        blocks.append({"type": "text", "text": user_content})

        response = client.messages.create(
            model=self.model,
            max_tokens=8192,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": blocks}],
        )

        usage = response.usage
        raw_text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return self._finish(
            "anthropic",
            raw_text,
            start,
            pages=len(images),
            usage=TokenUsage(
                input_tokens=getattr(usage, "input_tokens", 0) or 0,
                output_tokens=getattr(usage, "output_tokens", 0) or 0,
                cache_creation_tokens=getattr(usage, "cache_creation_input_tokens", 0) or 0,
                cache_read_tokens=getattr(usage, "cache_read_input_tokens", 0) or 0,
            ),
            response_json=response_json,
            stage=stage,
            doc_type=doc_type,
        )

    def _finish(
        self,
        provider: str,
        raw_text: str,
        start: float,
        *,
        pages: int,
        usage: TokenUsage,
        response_json: bool,
        stage: str,
        doc_type: str,
    ) -> dict[str, Any]:
        """Log, record cost and package one provider response."""
        duration_ms = int((time.time() - start) * 1000)
        logger.info(
            f"{self.agent_name}: {provider} call",
            model=self.model,
            stage=stage,
            pages=pages,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=duration_ms,
        )

        if self.cost_tracker:
            self.cost_tracker.record(
                provider,
                self.model,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cache_creation_tokens=usage.cache_creation_tokens,
                cache_read_tokens=usage.cache_read_tokens,
                stage=stage,
                doc_type=doc_type,
                duration_ms=duration_ms,
            )

        return {
            "content": self.parse_json(raw_text) if response_json else raw_text,
            "input_tokens": usage.input_tokens,
            "output_tokens": usage.output_tokens,
            "duration_ms": duration_ms,
            "provider": provider,
            "model": self.model,
        }

    # ------------------------------------------------------------------
    # JSON parsing
    # ------------------------------------------------------------------

    @staticmethod
    def parse_json(raw_text: str) -> dict:
        """Parse LLM output as JSON, stripping code fences if present."""
        text = strip_code_fences(raw_text)
        parsed = json.loads(text)
        if not isinstance(parsed, dict):
            raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
        return parsed


def _anthropic_image_block(page: PageImage) -> dict[str, Any]:
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": page.media_type,
            "data": base64.b64encode(page.data).decode("ascii"),
        },
    }
