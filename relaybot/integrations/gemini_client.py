"""
Gemini Client

Thin async wrapper around the google-genai SDK: one generate_content call per
prompt, with the reply reduced to ordered text parts per candidate.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from google import genai
from google.genai import types

from ..config import GeminiConfig
from ..exceptions import ConfigurationError, GenerationError

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """One alternative answer, made of ordered text parts."""

    parts: List[str] = field(default_factory=list)
    finish_reason: Optional[str] = None


@dataclass
class GenerativeReply:
    """Text candidates returned for a single prompt."""

    candidates: List[Candidate] = field(default_factory=list)

    def texts(self) -> Iterator[str]:
        """Yield every text part, candidate-major and part-minor."""
        for candidate in self.candidates:
            yield from candidate.parts

    @property
    def part_count(self) -> int:
        return sum(len(candidate.parts) for candidate in self.candidates)

    @classmethod
    def from_response(cls, response: types.GenerateContentResponse) -> "GenerativeReply":
        candidates = []
        for raw in response.candidates or []:
            parts = []
            if raw.content and raw.content.parts:
                for part in raw.content.parts:
                    # Skip inline data, function calls and thought summaries
                    if part.text is None or part.thought:
                        continue
                    parts.append(part.text)
            finish_reason = str(raw.finish_reason) if raw.finish_reason else None
            candidates.append(Candidate(parts=parts, finish_reason=finish_reason))
        return cls(candidates=candidates)


class GeminiClient:
    """
    Stateless request/response wrapper around the google-genai SDK.

    One instance is shared by every message handler; the SDK client is safe
    for concurrent use.
    """

    def __init__(self, config: GeminiConfig, client: Optional[genai.Client] = None):
        """
        Initialize the Gemini client.

        Args:
            config: Gemini settings (API key, model, generation options).
            client: Pre-built SDK client, mainly for tests.
        """
        if client is None and not config.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not set")

        self.model = config.model
        try:
            self.client = client or genai.Client(api_key=config.api_key)
        except Exception as e:
            logger.error(f"GeminiClient: Failed to initialize genai.Client: {e}")
            raise ConfigurationError(f"Invalid Gemini configuration: {e}") from e

        self.generation_config = None
        if any(
            value is not None
            for value in (config.temperature, config.max_output_tokens, config.system_instruction)
        ):
            self.generation_config = types.GenerateContentConfig(
                temperature=config.temperature,
                max_output_tokens=config.max_output_tokens,
                system_instruction=config.system_instruction,
            )

    async def verify(self) -> None:
        """Check that the API key is accepted and the model exists."""
        try:
            model = await self.client.aio.models.get(model=self.model)
        except Exception as e:
            raise GenerationError(self.model, e, "Gemini API key or model rejected") from e
        logger.info(f"GeminiClient: Using model {getattr(model, 'name', self.model)}")

    async def generate(self, prompt: str) -> GenerativeReply:
        """
        Send `prompt` as the only content of a generate_content request.

        Raises:
            GenerationError: If the request fails for any reason.
        """
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=self.generation_config,
            )
        except Exception as e:
            raise GenerationError(self.model, e) from e

        reply = GenerativeReply.from_response(response)
        logger.debug(
            f"GeminiClient: {len(reply.candidates)} candidate(s), {reply.part_count} text part(s)"
        )
        return reply

    async def close(self) -> None:
        await self.client.aio.aclose()
