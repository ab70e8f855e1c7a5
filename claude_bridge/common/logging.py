"""Loguru日志配置"""

import sys
import uuid

from loguru import logger


def _ensure_request_id(record) -> bool:
    record["extra"].setdefault("request_id", "---")
    return True


def configure_logging(config) -> None:
    """配置Loguru日志系统

    客户端进程拥有stdout，所以控制台日志只写stderr。

    Args:
        config: BridgeConfig 配置对象
    """
    # 移除默认的handler
    logger.remove()

    log_dir = config.log_path
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "bridge.log"

    console_level = "DEBUG" if config.debug else "WARNING"
    file_level = "DEBUG" if config.logging_enabled else "INFO"

    # 控制台日志格式（包含请求ID）
    console_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{extra[request_id]}</cyan> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"

    # 配置控制台日志
    logger.add(
        sys.stderr,
        format=console_format,
        level=console_level,
        colorize=True,
        filter=_ensure_request_id,
    )

    # 配置文件日志
    logger.add(
        str(log_path),
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[request_id]} | {name}:{line} | {message}",
        level=file_level,
        rotation="10 MB",
        retention=3,
        encoding="utf-8",
        enqueue=True,  # 写文件不阻塞事件循环
        backtrace=True,
        diagnose=False,
        filter=_ensure_request_id,
    )


def generate_request_id() -> str:
    """生成唯一的事务ID

    Returns:
        str: 格式为 req_xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx 的请求ID
    """
    return f"req_{uuid.uuid4()}"


def get_logger_with_request_id(request_id: str = None):
    """获取绑定了请求ID的日志器实例

    Args:
        request_id: 请求ID，如果为None则使用默认值

    Returns:
        绑定了请求ID的logger实例
    """
    if request_id:
        return logger.bind(request_id=request_id)
    else:
        return logger.bind(request_id="---")
