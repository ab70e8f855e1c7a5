#!/usr/bin/env python3
"""
Claude Bridge 本地服务器启动脚本

配置来源：
1. 命令行指定的 --config JSON 文件
2. 环境变量 CLAUDE_BRIDGE_CONFIG（启动器写入的序列化配置）

客户端通过 ANTHROPIC_BASE_URL=http://host:port 指向本服务器即可。
"""

import argparse
import sys

import uvicorn

from claude_bridge.common.logging import configure_logging
from claude_bridge.config.settings import (
    CONFIG_ENV_VAR,
    load_config,
    load_config_file,
    set_config,
)
from claude_bridge.main import create_app
from claude_bridge.models.errors import ConfigurationError


def main():
    """主启动函数"""
    parser = argparse.ArgumentParser(description="启动 Claude Bridge 本地服务器")
    parser.add_argument(
        "--config", type=str, help=f"JSON 配置文件路径 (默认读取 {CONFIG_ENV_VAR})"
    )
    parser.add_argument("--host", type=str, default="127.0.0.1", help="监听地址")
    parser.add_argument("--port", type=int, default=8082, help="监听端口")

    args = parser.parse_args()

    try:
        config = load_config_file(args.config) if args.config else load_config()
    except ConfigurationError as e:
        # 配置错误在任何网络请求之前终止进程
        print(f"❌ 配置错误: {e}", file=sys.stderr)
        sys.exit(1)

    set_config(config)
    configure_logging(config)

    mode = "trace" if config.trace else f"bridge -> {config.provider.value}:{config.model}"
    print(f"🚀 启动 Claude Bridge ({mode})...", file=sys.stderr)
    print(f"   监听地址: {args.host}:{args.port}", file=sys.stderr)
    print(f"   ANTHROPIC_BASE_URL=http://{args.host}:{args.port}", file=sys.stderr)
    print(f"   健康检查: http://{args.host}:{args.port}/health", file=sys.stderr)

    uvicorn.run(
        create_app(config),
        host=args.host,
        port=args.port,
        timeout_keep_alive=60,
        log_level="debug" if config.debug else "warning",
    )


if __name__ == "__main__":
    main()
