"""
Text-generation collaborator.

generate() either returns the model's text (however odd) or raises
GenerationError. Callers rely on that distinction: malformed text is
handled by the caller's fallback, a GenerationError is a failed command.
"""
import abc
import asyncio
import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class GenerationError(Exception):
    """The text-generation call itself failed (network, provider, auth)."""
    pass


class TextGenerator(abc.ABC):
    """Contract: generate(prompt, model_hint) -> text."""

    @abc.abstractmethod
    async def generate(self, prompt: str, model_hint: str = DEFAULT_MODEL) -> str:
        ...


class HttpTextGenerator(TextGenerator):
    """OpenAI-compatible chat completions client (POST {base_url}/chat/completions)."""

    def __init__(self, base_url: str, api_key: str = "", default_model: str = DEFAULT_MODEL,
                 timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout

    def _complete(self, prompt: str, model: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            r = requests.post(
                f"{self.base_url}/chat/completions",
                json={
                    "model": model,
                    "messages": [{"role": "user", "content": prompt}],
                },
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GenerationError(f"Text generation request failed: {e}") from e

        if not r.ok:
            raise GenerationError(f"Text generation returned HTTP {r.status_code}")

        try:
            return r.json()["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise GenerationError("Text generation returned an unexpected payload") from e

    async def generate(self, prompt: str, model_hint: str = "") -> str:
        model = model_hint or self.default_model
        logger.debug(f"Generating with {model} ({len(prompt)} chars)")
        return await asyncio.to_thread(self._complete, prompt, model)
