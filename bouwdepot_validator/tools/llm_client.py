"""OpenRouter LLM client with cost tracking"""

from openai import OpenAI, OpenAIError
import base64
import os
import time
from typing import List, Optional
from bouwdepot_validator.constants import DEFAULT_CALL_TIMEOUT_SECONDS
from bouwdepot_validator.utils.metrics import llm_tokens_counter, llm_cost_counter, llm_api_latency
from bouwdepot_validator.utils.errors import LLMError, ConfigurationError
from bouwdepot_validator.utils.logging import get_logger

logger = get_logger(__name__)

# Lazy-initialize OpenRouter client
_client = None


def get_client():
    """Get or create the OpenRouter client (lazy initialization)"""
    global _client
    if _client is None:
        api_key = os.getenv("OPENROUTER_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENROUTER_API_KEY environment variable is not set")
        _client = OpenAI(
            api_key=api_key,
            base_url="https://openrouter.ai/api/v1"
        )
    return _client


# Pricing per 1M tokens (input tokens, simplified)
MODEL_PRICING = {
    "anthropic/claude-haiku-4.5": 0.80 / 1_000_000,
    "anthropic/claude-sonnet-4.5": 3.0 / 1_000_000,
    "google/gemini-2.0-flash-001": 0.10 / 1_000_000,
    "openai/gpt-4o-mini": 0.15 / 1_000_000,
}


def _user_content(prompt: str, images: Optional[List[bytes]]):
    if not images:
        return prompt

    content = [{"type": "text", "text": prompt}]
    for image in images:
        encoded = base64.b64encode(image).decode("ascii")
        content.append({
            "type": "image_url",
            "image_url": {"url": f"data:image/png;base64,{encoded}"}
        })
    return content


def call_llm(
    prompt: str,
    model: Optional[str] = None,
    operation: str = "unknown",
    system_prompt: Optional[str] = None,
    images: Optional[List[bytes]] = None,
    timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS
) -> str:
    """
    Single LLM call with cost tracking. Retries are left to the caller.

    Args:
        prompt: User prompt
        model: Model name (defaults to DEFAULT_LLM_MODEL)
        operation: Calling operation (for metrics)
        system_prompt: Optional system instructions
        images: Optional page images sent alongside the prompt
        timeout: Request timeout in seconds

    Returns:
        LLM response text

    Raises:
        LLMError: If the API call fails or returns no content
    """
    model = model or os.getenv("DEFAULT_LLM_MODEL", "anthropic/claude-haiku-4.5")

    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": _user_content(prompt, images)})

    start_time = time.time()
    try:
        response = get_client().chat.completions.create(
            model=model,
            messages=messages,
            timeout=timeout
        )
    except OpenAIError as e:
        logger.error(f"LLM API error: {e}", model=model, operation=operation)
        raise LLMError(f"LLM API call failed: {e}")

    latency = time.time() - start_time
    tokens = response.usage.total_tokens if response.usage else 0
    cost = calculate_cost(tokens, model)

    llm_tokens_counter.labels(model_name=model, operation=operation).inc(tokens)
    llm_cost_counter.labels(model_name=model).inc(cost)
    llm_api_latency.labels(model_name=model).observe(latency)

    logger.info(
        "LLM call successful",
        model=model,
        tokens=tokens,
        cost=cost,
        latency=latency,
        operation=operation
    )

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise LLMError("LLM returned an empty response")
    return content


def calculate_cost(tokens: int, model: str) -> float:
    """
    Calculate cost based on token usage and model pricing.

    Args:
        tokens: Number of tokens used
        model: Model name

    Returns:
        Cost in USD
    """
    price_per_token = MODEL_PRICING.get(model, 0.15 / 1_000_000)
    return tokens * price_per_token
