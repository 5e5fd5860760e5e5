"""Language-model access behind a single `generate` call."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional, Protocol, Sequence, Tuple

import openai

from nextstep.core.config import settings
from nextstep.core.errors import GenerationError
from nextstep.observability.tracing import trace

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    def generate(self, system_prompt: str, user_prompt: str) -> str:
        """Return the model's raw text or raise GenerationError."""
        ...


class OpenAITextGenerator:
    """
    Chat-completions generator that walks an ordered list of model names.

    A model the account cannot see (404 / not found) moves on to the next
    name; any other API failure is raised straight away.
    """

    def __init__(self, client: openai.OpenAI, models: Sequence[str]) -> None:
        if not models:
            raise ValueError("at least one model name is required")
        self._client = client
        self.models: Tuple[str, ...] = tuple(dict.fromkeys(models))

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        last_error: Exception | None = None
        for model in self.models:
            try:
                with trace("llm.generate", metadata={"model": model, "prompt_chars": len(user_prompt)}):
                    completion = self._client.chat.completions.create(
                        model=model,
                        response_format={"type": "json_object"},
                        messages=[
                            {"role": "system", "content": system_prompt},
                            {"role": "user", "content": user_prompt},
                        ],
                    )
            except openai.NotFoundError as exc:
                logger.warning("Model %s is not available; trying the next one.", model)
                last_error = exc
                continue
            except openai.OpenAIError as exc:
                raise GenerationError(f"OpenAI request failed for model {model}: {exc}") from exc

            if model != self.models[0]:
                logger.info("Used fallback model %s (primary %s unavailable).", model, self.models[0])
            content = completion.choices[0].message.content if completion.choices else None
            if not content:
                raise GenerationError(f"Model {model} returned an empty response")
            return content

        tried = ", ".join(self.models)
        raise GenerationError(f"No configured model is available. Tried: {tried}. Last error: {last_error}")


@lru_cache
def _build_generator(api_key: str, models: Tuple[str, ...]) -> OpenAITextGenerator:
    return OpenAITextGenerator(openai.OpenAI(api_key=api_key), models)


def get_text_generator() -> Optional[TextGenerator]:
    """FastAPI dependency; None means no API key is configured and fallbacks apply."""
    if not settings.openai_api_key:
        return None
    models = (settings.openai_model, *settings.openai_fallback_models)
    return _build_generator(settings.openai_api_key, models)
