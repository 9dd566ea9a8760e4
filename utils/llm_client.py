"""
LLM Client using LiteLLM for multi-provider support.

This is the default judge collaborator: anything with a compatible
``generate`` coroutine can stand in for it (see utils/judge.py).

Switch providers by changing the model string:
    - "gpt-4o-mini" (OpenAI)
    - "claude-3-5-haiku-20241022" (Anthropic)
    - "openrouter/x-ai/grok-4.1-fast" (OpenRouter)
"""

from typing import List, Dict, Any

import litellm
from tenacity import retry, stop_after_attempt, wait_exponential

from core import get_logger

logger = get_logger(__name__)

# Configure LiteLLM
litellm.set_verbose = False  # Set True for debugging


class LLMClient:
    """
    Unified LLM client supporting multiple providers via LiteLLM.

    Usage:
        client = LLMClient()
        text = await client.generate(system_prompt, user_prompt, model="gpt-4o-mini")
    """

    DEFAULT_JUDGE_MODEL = "gpt-4o-mini"

    def __init__(self):
        """Initialize LLM client."""
        # LiteLLM picks up API keys from environment:
        # - OPENAI_API_KEY
        # - ANTHROPIC_API_KEY
        # - OPENROUTER_API_KEY
        logger.info("LLM client initialized")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def chat(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        **kwargs: Any,
    ) -> str:
        """
        Generate a chat completion.

        Args:
            model: Model identifier
            messages: List of message dicts
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response
            **kwargs: Additional parameters passed to LiteLLM

        Returns:
            Generated response text
        """
        logger.debug(
            "LLM request",
            model=model,
            message_count=len(messages),
            temperature=temperature,
        )

        try:
            response = await litellm.acompletion(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )

            content = response.choices[0].message.content or ""
            finish_reason = response.choices[0].finish_reason

            logger.debug(
                "LLM response",
                model=model,
                tokens_used=response.usage.total_tokens if response.usage else None,
                response_length=len(content),
                finish_reason=finish_reason,
            )

            # Log truncated response for debugging at DEBUG level
            if len(content) > 200:
                truncated = f"{content[:100]}...{content[-100:]}"
            else:
                truncated = content

            logger.debug(
                "LLM response preview",
                model=model,
                finish_reason=finish_reason,
                response_preview=truncated,
            )

            return content

        except Exception as e:
            logger.error("LLM request failed", model=model, error=str(e))
            raise

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str = DEFAULT_JUDGE_MODEL,
        temperature: float = 0.2,
        max_tokens: int = 1000,
        **kwargs: Any,
    ) -> str:
        """
        Convenience method for a single system + user judge call.
        """
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return await self.chat(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
