# screener.app.llm package
from screener.app.llm.cache import ResponseCache, response_cache
from screener.app.llm.groq_client import ChatCompletionResult, create_chat_completion

__all__ = ["ResponseCache", "response_cache", "ChatCompletionResult", "create_chat_completion"]
