"""Chat model factory for signal extraction, built on browser-use's native chat models."""

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from browser_use import (
    ChatAnthropic,
    ChatAzureOpenAI,
    ChatGoogle,
    ChatGroq,
    ChatOllama,
    ChatOpenAI,
)

# Not exported from the browser_use top level
from browser_use.llm.aws.chat_bedrock import ChatAWSBedrock
from browser_use.llm.deepseek.chat import ChatDeepSeek
from browser_use.llm.openrouter.chat import ChatOpenRouter

from .config import NO_KEY_PROVIDERS, STANDARD_ENV_VAR_NAMES, LLMSettings
from .exceptions import LLMProviderError

if TYPE_CHECKING:
    from browser_use.llm.base import BaseChatModel

DEFAULT_AZURE_API_VERSION = "2024-02-01"


def _azure(model: str, api_key: str | None, base_url: str | None, options: dict[str, Any]) -> "BaseChatModel":
    endpoint = options.get("azure_endpoint")
    if not endpoint:
        raise LLMProviderError("Azure OpenAI requires MCP_LLM_AZURE_ENDPOINT to be set.")
    return ChatAzureOpenAI(
        model=model,
        api_key=api_key,
        azure_endpoint=endpoint,
        api_version=options.get("azure_api_version") or DEFAULT_AZURE_API_VERSION,
    )


# provider -> builder(model, api_key, base_url, options)
_BUILDERS: dict[str, Callable[[str, str | None, str | None, dict[str, Any]], "BaseChatModel"]] = {
    "openai": lambda model, key, url, opts: ChatOpenAI(model=model, api_key=key, base_url=url),
    "anthropic": lambda model, key, url, opts: ChatAnthropic(model=model, api_key=key),
    "google": lambda model, key, url, opts: ChatGoogle(model=model, api_key=key),
    "azure_openai": _azure,
    "groq": lambda model, key, url, opts: ChatGroq(model=model, api_key=key),
    "deepseek": lambda model, key, url, opts: ChatDeepSeek(model=model, api_key=key),
    "ollama": lambda model, key, url, opts: ChatOllama(model=model, base_url=url),
    "bedrock": lambda model, key, url, opts: ChatAWSBedrock(model_id=model, region=opts.get("aws_region")),
    "openrouter": lambda model, key, url, opts: ChatOpenRouter(model=model, api_key=key),
}


def _missing_key_hint(provider: str) -> str:
    names = STANDARD_ENV_VAR_NAMES.get(provider, "an API key")
    if isinstance(names, list):
        names = " or ".join(names)
    return names


def get_llm(
    provider: str,
    model: str,
    api_key: str | None = None,
    base_url: str | None = None,
    **options,
) -> "BaseChatModel":
    """Create the chat model that turns search evidence into structured signals.

    A key is not needed for ollama and bedrock, or when base_url points at a
    self-hosted OpenAI-compatible endpoint.

    Raises:
        LLMProviderError: If the provider is unknown, its key is missing, or the model cannot be built.
    """
    builder = _BUILDERS.get(provider)
    if builder is None:
        raise LLMProviderError(f"Unsupported provider: {provider}")

    if provider not in NO_KEY_PROVIDERS and not base_url and not api_key:
        raise LLMProviderError(f"API key required for provider '{provider}'. Set {_missing_key_hint(provider)} or MCP_LLM_API_KEY environment variable.")

    try:
        return builder(model, api_key, base_url, options)
    except LLMProviderError:
        raise
    except Exception as e:
        raise LLMProviderError(f"Failed to initialize {provider} LLM: {e}") from e


def get_llm_from_settings(llm_settings: LLMSettings) -> "BaseChatModel":
    """Build the chat model described by an LLMSettings section."""
    return get_llm(
        llm_settings.provider,
        llm_settings.model_name,
        api_key=llm_settings.get_api_key_for_provider(),
        base_url=llm_settings.base_url,
        azure_endpoint=llm_settings.azure_endpoint,
        azure_api_version=llm_settings.azure_api_version,
        aws_region=llm_settings.aws_region,
    )
