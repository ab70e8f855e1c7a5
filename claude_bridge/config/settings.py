"""桥接配置模型与加载

BridgeConfig 在进程启动时由启动器序列化到环境变量 CLAUDE_BRIDGE_CONFIG，
这里一次性反序列化并校验，失败立即抛出 ConfigurationError。
配置创建后不可变，所有组件只读。
"""

import json
import os
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from claude_bridge.models.errors import ConfigurationError

CONFIG_ENV_VAR = "CLAUDE_BRIDGE_CONFIG"
DEFAULT_LOG_DIRECTORY = ".claude-bridge"
DEFAULT_NATIVE_BASE_URL = "https://api.anthropic.com"
DEFAULT_MAX_RETRIES = 2


class Provider(str, Enum):
    """可桥接的目标供应商"""

    OPENAI = "openai"
    GOOGLE = "google"


# 各供应商的API密钥环境变量与默认地址
PROVIDER_API_KEY_ENV = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.GOOGLE: "GOOGLE_API_KEY",
}

PROVIDER_DEFAULT_BASE_URL = {
    Provider.OPENAI: "https://api.openai.com/v1",
    Provider.GOOGLE: "https://generativelanguage.googleapis.com/v1beta",
}


class BridgeConfig(BaseModel):
    """桥接配置，进程生命周期内不可变"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    provider: Provider | None = Field(None, description="目标供应商，trace模式下忽略")
    model: str | None = Field(None, description="目标模型ID，trace模式下忽略")
    api_key: str | None = Field(None, alias="apiKey", description="供应商API密钥")
    base_url: str | None = Field(None, alias="baseURL", description="自定义API地址")
    max_retries: int = Field(
        DEFAULT_MAX_RETRIES, alias="maxRetries", ge=0, description="最大网络尝试次数"
    )
    max_output_tokens: int | None = Field(
        None, alias="maxOutputTokens", ge=1, description="输出token上限覆盖"
    )
    log_directory: str = Field(
        DEFAULT_LOG_DIRECTORY, alias="logDirectory", description="日志目录"
    )
    debug: bool = Field(False, description="是否记录请求/响应日志")
    trace: bool = Field(False, description="trace模式：只记录不重定向")
    native_base_url: str = Field(
        DEFAULT_NATIVE_BASE_URL, alias="nativeBaseURL", description="被拦截的原生API地址"
    )

    @property
    def resolved_base_url(self) -> str:
        """供应商API地址，未配置时使用默认值"""
        if self.base_url:
            return self.base_url.rstrip("/")
        return PROVIDER_DEFAULT_BASE_URL[self.provider]

    @property
    def log_path(self) -> Path:
        return Path(self.log_directory)

    @property
    def logging_enabled(self) -> bool:
        """trace模式隐含debug"""
        return self.debug or self.trace


def validate_config(config: BridgeConfig) -> BridgeConfig:
    """校验配置完整性，必要时从环境变量补全API密钥

    Raises:
        ConfigurationError: 缺少凭据或provider/model无效
    """
    if config.trace:
        # trace模式下provider、model和密钥都不使用
        return config

    if config.provider is None:
        raise ConfigurationError(
            f"provider is required; available providers: {', '.join(p.value for p in Provider)}"
        )
    if not config.model or not config.model.strip():
        raise ConfigurationError(f"model is required for provider {config.provider.value}")

    if not config.api_key:
        env_var = PROVIDER_API_KEY_ENV[config.provider]
        api_key = os.getenv(env_var)
        if not api_key:
            raise ConfigurationError(
                f"API key not found. Provide apiKey or set {env_var} environment variable"
            )
        config = config.model_copy(update={"api_key": api_key})

    return config


def parse_config(raw: str | dict) -> BridgeConfig:
    """解析序列化的配置对象

    Raises:
        ConfigurationError: JSON或字段校验失败
    """
    try:
        data = json.loads(raw) if isinstance(raw, str) else dict(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{CONFIG_ENV_VAR} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{CONFIG_ENV_VAR} must be a JSON object")

    provider = data.get("provider")
    if provider == "anthropic" and not data.get("trace"):
        raise ConfigurationError("Anthropic provider not supported for bridging")

    # trace模式下忽略provider和model
    if data.get("trace"):
        data = {k: v for k, v in data.items() if k not in ("provider", "model")}

    try:
        config = BridgeConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid bridge configuration: {e}") from e

    return validate_config(config)


def load_config(environ: dict[str, str] | None = None) -> BridgeConfig:
    """从环境变量加载配置（进程启动时调用一次）"""
    environ = os.environ if environ is None else environ
    raw = environ.get(CONFIG_ENV_VAR)
    if not raw:
        raise ConfigurationError(f"{CONFIG_ENV_VAR} is not set")
    return parse_config(raw)


def load_config_file(path: str | Path) -> BridgeConfig:
    """从JSON文件加载配置，供本地服务器命令行使用"""
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"cannot read config file {config_path}: {e}") from e
    return parse_config(raw)


_config: BridgeConfig | None = None


def get_config() -> BridgeConfig:
    """获取进程级配置实例，首次调用时从环境变量加载"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: BridgeConfig) -> None:
    """显式设置进程级配置（启动时注入）"""
    global _config
    _config = config
