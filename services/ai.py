"""
Text Generation (Azure OpenAI)

Optional capability for user-facing copy. Every call carries a static
fallback that is returned when the model is unconfigured, errors, or
replies with nothing, so callers never branch on it.
"""

import structlog
from typing import Optional

from openai import AsyncAzureOpenAI
from config import get_settings

settings = get_settings()
logger = structlog.get_logger("ai")


class TextGenerator:

    def __init__(self, client: Optional[AsyncAzureOpenAI] = None):
        self.client = client
        if self.client is None and settings.ai_configured:
            self.client = AsyncAzureOpenAI(
                azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
                api_key=settings.AZURE_OPENAI_API_KEY,
                api_version=settings.AZURE_OPENAI_API_VERSION
            )

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def generate(
        self,
        prompt: str,
        fallback: str,
        system_instruction: Optional[str] = None,
        max_tokens: int = 300
    ) -> str:
        if not self.enabled:
            return fallback

        messages = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=settings.AZURE_OPENAI_DEPLOYMENT_NAME,
                messages=messages,
                temperature=0.7,
                max_tokens=max_tokens
            )

            if not response.choices:
                logger.warning("Empty response from OpenAI")
                return fallback

            text = (response.choices[0].message.content or "").strip()
            return text or fallback

        except Exception as e:
            logger.error("OpenAI API error", error=str(e))
            return fallback
