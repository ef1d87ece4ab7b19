"""MCP server for staged company research and bulk research sessions."""

from .config import settings
from .exceptions import CompanyResearchError, ConfigurationError, LLMProviderError
from .providers import get_llm
from .server import main, serve

__all__ = [
    "main",
    "serve",
    "settings",
    "get_llm",
    "CompanyResearchError",
    "ConfigurationError",
    "LLMProviderError",
]
