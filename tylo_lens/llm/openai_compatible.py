"""
OpenAI-Compatible Client Wrapper

Chat completions against any OpenAI-compatible endpoint, traced as llm
spans through TyloLens.wrap_llm().

DESIGN RULES:
- No retries or error handling frameworks
- No streaming (use the HTTP interceptor with capture_sse for that)
- Prompt text recorded on the span follows the lens ethics settings
"""

import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from openai import OpenAI

if TYPE_CHECKING:
    from tylo_lens.observability.lens import TyloLens


Message = Dict[str, Any]


def messages_to_prompt(messages: List[Message]) -> str:
    """Flatten chat messages into ``role: content`` lines."""
    return "\n".join(f"{m.get('role', '')}: {m.get('content') or ''}" for m in messages)


class OpenAICompatibleClient:
    """
    Usage:
        client = OpenAICompatibleClient(lens, default_model="gpt-4o-mini")
        completion = client.chat([{"role": "user", "content": "hi"}])
    """

    def __init__(
        self,
        lens: "TyloLens",
        client: Optional[Any] = None,
        default_model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ):
        self._lens = lens
        self._client = client or OpenAI(base_url=base_url, api_key=api_key)
        self.default_model = default_model

    def chat(
        self,
        messages: List[Message],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Any:
        """
        Create a chat completion.

        Returns:
            The provider's completion object, unchanged
        """
        model = model or self.default_model

        def call(prompt: str, messages: List[Message]) -> Dict[str, Any]:
            start_time = time.time()
            params: Dict[str, Any] = {"model": model, "messages": messages}
            if temperature is not None:
                params["temperature"] = temperature
            if max_tokens is not None:
                params["max_tokens"] = max_tokens

            response = self._client.chat.completions.create(**params)

            usage = None
            if response.usage:
                usage = {
                    "prompt_tokens": response.usage.prompt_tokens,
                    "completion_tokens": response.usage.completion_tokens,
                    "total_tokens": response.usage.total_tokens,
                }
            return {
                "output_text": response.choices[0].message.content or "",
                "usage": usage,
                "latency_ms": int((time.time() - start_time) * 1000),
                "raw": response,
            }

        traced = self._lens.wrap_llm(model, call, name="openai-compatible.chat", meta={"provider": "openai-compatible"})
        return traced(prompt=messages_to_prompt(messages), messages=messages)["raw"]

    def complete(self, prompt: str, model: Optional[str] = None) -> str:
        """Single user prompt in, assistant text out."""
        completion = self.chat([{"role": "user", "content": prompt}], model=model)
        return completion.choices[0].message.content or ""
