"""供应商适配器注册表

新增供应商：实现一个 ProviderAdapter 子类，并在此表中登记一行。
"""

from claude_bridge.config.settings import Provider
from claude_bridge.models.errors import ConfigurationError

from .base import ProviderAdapter
from .google_converter import GoogleAdapter
from .openai_converter import OpenAIAdapter

PROVIDER_ADAPTERS: dict[Provider, ProviderAdapter] = {
    Provider.OPENAI: OpenAIAdapter(),
    Provider.GOOGLE: GoogleAdapter(),
}


def get_adapter(provider: Provider | None) -> ProviderAdapter:
    """获取供应商适配器

    Raises:
        ConfigurationError: 供应商未配置或未登记
    """
    adapter = PROVIDER_ADAPTERS.get(provider) if provider is not None else None
    if adapter is None:
        raise ConfigurationError(f"no adapter registered for provider {provider!r}")
    return adapter
