"""
配置管理模块

提供桥接配置的加载、校验和模型能力查询。

主要功能:
- 从环境变量一次性加载并校验 BridgeConfig
- 供应商默认地址与密钥环境变量
- 模型能力注册表

使用示例:
    from claude_bridge.config import load_config

    config = load_config()
    print(config.provider, config.model)
"""

from .registry import ModelCapabilities, find_model_capabilities
from .settings import (
    CONFIG_ENV_VAR,
    BridgeConfig,
    Provider,
    get_config,
    load_config,
    load_config_file,
    parse_config,
    set_config,
)

__all__ = [
    # 配置加载
    "CONFIG_ENV_VAR",
    "load_config",
    "load_config_file",
    "parse_config",
    "get_config",
    "set_config",
    # 配置模型
    "BridgeConfig",
    "Provider",
    # 能力注册表
    "ModelCapabilities",
    "find_model_capabilities",
]
