from .client import HTTPCompletionClient
from .formats import AnthropicFormat, OpenAIFormat, ProviderFormat, get_format

__all__ = ["AnthropicFormat", "HTTPCompletionClient", "OpenAIFormat", "ProviderFormat", "get_format"]
