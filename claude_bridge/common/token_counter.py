import json

import tiktoken

from claude_bridge.models.wire import (
    ImageBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    WireRequest,
)

# 每张图像按固定token数估算
IMAGE_TOKEN_ESTIMATE = 1600


class TokenCounter:
    """Token计数器，仅用于回答 count_tokens 与上下文窗口警告

    消息响应中的usage始终来自后端，从不使用这里的估算值。
    """

    def __init__(self, encoder=None):
        self._encoder = encoder

    @property
    def encoder(self):
        # 延迟加载，tiktoken首次使用时需要读取编码表
        if self._encoder is None:
            self._encoder = tiktoken.get_encoding("o200k_base")
        return self._encoder

    def _block_texts(self, block) -> tuple[list[str], int]:
        """处理单个内容块，返回文本列表与图像数量"""
        if isinstance(block, TextBlock):
            return [block.text], 0
        if isinstance(block, ToolUseBlock):
            return [block.name, json.dumps(block.input, ensure_ascii=False)], 0
        if isinstance(block, ImageBlock):
            return [], 1
        if isinstance(block, ToolResultBlock):
            images = 0
            if not isinstance(block.content, str):
                images = sum(1 for part in block.content if isinstance(part, ImageBlock))
            return [block.text_content()], images
        return [], 0

    def count_request_tokens(self, request: WireRequest) -> int:
        """计算完整请求的token总数

        Args:
            request: 中间表示的请求

        Returns:
            int: 估算的输入token数量
        """
        # 收集所有文本内容到单个列表
        text_parts: list[str] = []
        image_count = 0

        if request.system:
            text_parts.extend(request.system)

        for turn in request.messages:
            for block in turn.content:
                texts, images = self._block_texts(block)
                text_parts.extend(texts)
                image_count += images

        if request.tools:
            for tool in request.tools:
                text_parts.append(tool.name)
                if tool.description:
                    text_parts.append(tool.description)
                text_parts.append(json.dumps(tool.input_schema, ensure_ascii=False))

        # 一次性拼接所有文本并计算token
        combined_text = "".join(text_parts)
        return len(self.encoder.encode(combined_text)) + image_count * IMAGE_TOKEN_ESTIMATE


token_counter = TokenCounter()
