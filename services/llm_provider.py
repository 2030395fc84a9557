"""
Model provider wrapper.

Three capabilities, all on the OpenAI Responses / Conversations APIs:
- generate_structured: prompt + Pydantic schema -> parsed instance, or raise
- generate_text: prompt -> text plus the provider response id (for chaining)
- create_conversation: provider-side conversation for threading
"""

import logging
from dataclasses import dataclass
from typing import Optional, Type, TypeVar

from openai import OpenAI
from pydantic import BaseModel

from core.config import settings
from core.exceptions import ProviderUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass
class TextGeneration:
    text: str
    response_id: Optional[str] = None


class OpenAIProvider:
    def __init__(
        self,
        client: OpenAI,
        structured_model: Optional[str] = None,
        text_model: Optional[str] = None,
    ):
        self.client = client
        self.structured_model = structured_model or settings.COACH_AGENT_MODEL
        self.text_model = text_model or settings.COACH_CHAT_MODEL

    def generate_structured(
        self,
        system: str,
        prompt: str,
        schema: Type[T],
        model: Optional[str] = None,
    ) -> T:
        response = self.client.responses.parse(
            model=model or self.structured_model,
            instructions=system,
            input=prompt,
            text_format=schema,
        )
        parsed = response.output_parsed
        if parsed is None:
            raise ProviderUnavailableError("Structured generation returned no parsed output")
        return parsed

    def generate_text(
        self,
        system: str,
        prompt: str,
        conversation_id: Optional[str] = None,
        previous_response_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> TextGeneration:
        kwargs = {
            "model": model or self.text_model,
            "instructions": system,
            "input": prompt,
            "store": True,
        }
        # A conversation carries its own chain; previous_response_id only without one.
        if conversation_id:
            kwargs["conversation"] = conversation_id
        elif previous_response_id:
            kwargs["previous_response_id"] = previous_response_id

        response = self.client.responses.create(**kwargs)
        return TextGeneration(text=response.output_text or "", response_id=response.id)

    def create_conversation(self, metadata: Optional[dict] = None) -> str:
        conversation = self.client.conversations.create(metadata=metadata or {})
        return conversation.id


_provider: Optional[OpenAIProvider] = None


def get_provider() -> Optional[OpenAIProvider]:
    """Process-wide provider, or None when no API key is configured."""
    global _provider

    if _provider is not None:
        return _provider

    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set - coach model calls disabled")
        return None

    try:
        client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.LLM_TIMEOUT_S)
    except Exception as e:
        logger.warning(f"OpenAI client not initialized: {e}")
        return None

    _provider = OpenAIProvider(client)
    return _provider
