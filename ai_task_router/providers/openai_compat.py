"""
OpenAI-compatible provider adapter.

Runs prompts through any origin that speaks the OpenAI chat completions API.
"""

import os
from typing import Optional

import openai
from openai import OpenAI

from ..core.errors import ConfigurationError, ProviderExecutionError, ProviderTimeoutError
from .base import GenerationResult

DEFAULT_TIMEOUT_SECONDS = 60.0


class OpenAICompatibleProvider:
    """Chat completions client bound to one origin.
    
    SDK retries are disabled; failover across models happens in the router.
    """
    
    def __init__(
        self,
        origin: str,
        api_key_env: str,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS
    ):
        """Initialize the provider for an origin.
        
        Args:
            origin: Origin name this client serves (e.g. "groq")
            api_key_env: Environment variable holding the API key
            base_url: API endpoint; None uses the OpenAI default
            timeout: Seconds before a call fails with ProviderTimeoutError
            
        Raises:
            ConfigurationError: If the API key variable is unset or empty
        """
        if not origin or not origin.strip():
            raise ValueError("origin is required and cannot be empty")
        
        api_key = os.environ.get(api_key_env, "").strip()
        if not api_key:
            raise ConfigurationError(
                f"{api_key_env} not found in environment variables; origin '{origin}' is unavailable"
            )
        
        self.origin = origin
        self.base_url = base_url
        self.timeout = timeout
        self.client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
    
    def generate_content(
        self,
        model: str,
        prompt: str,
        temperature: Optional[float] = None
    ) -> GenerationResult:
        """Send a single-turn prompt and return the completion text.
        
        Args:
            model: Model name on this origin
            prompt: User prompt
            temperature: Sampling temperature (optional)
            
        Returns:
            GenerationResult with the provider's reported total tokens, if any
            
        Raises:
            ValueError: If prompt is empty
            ProviderTimeoutError: If the call exceeds the configured timeout
            ProviderExecutionError: For any other API failure
        """
        if not prompt:
            raise ValueError("prompt is required and cannot be empty")
        
        kwargs = {}
        if temperature is not None:
            kwargs["temperature"] = temperature
        
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                **kwargs
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(
                f"{self.origin} timed out after {self.timeout}s: {e}",
                origin=self.origin,
                model=model
            ) from e
        except openai.OpenAIError as e:
            raise ProviderExecutionError(
                f"{self.origin} API error: {e}",
                origin=self.origin,
                model=model
            ) from e
        
        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        
        usage = response.usage
        tokens_used = usage.total_tokens if usage else None
        
        return GenerationResult(text=text, tokens_used=tokens_used)
