"""
GENERATION MODULE - Chat completions

Sends a system + user conversation and returns the first choice's text.
Model, temperature and max tokens come from configuration only.
"""

import logging
from typing import Dict, List, Optional

from querylens.ai_feature.providers import ProviderClient
from querylens.core.errors import ProviderError

logger = logging.getLogger(__name__)


class GenerationClient:
    def __init__(
        self,
        provider: ProviderClient,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ):
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def generate(self, user_prompt: str, system_prompt: Optional[str] = None) -> str:
        """
        Completion text for `user_prompt`, optionally steered by `system_prompt`.

        Raises:
            ProviderError: no choices in the response
        """
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        response = await self.provider.post_json(
            "/chat/completions",
            {
                "model": self.model,
                "messages": messages,
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
            },
        )

        choices = response.get("choices") or []
        if not choices:
            raise ProviderError("Failed to generate text: Empty response")

        message = choices[0].get("message") or {}
        content = message.get("content")
        if content is None:
            raise ProviderError("Failed to generate text: Empty response")

        logger.debug(
            f"Generated {len(content)} chars with {self.model} "
            f"(finish_reason={choices[0].get('finish_reason')})"
        )
        return content
