# LLM Package
from tylo_lens.llm.openai_compatible import OpenAICompatibleClient, messages_to_prompt

__all__ = ["OpenAICompatibleClient", "messages_to_prompt"]
