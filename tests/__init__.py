"""
测试模块

包含项目的单元测试和集成测试。

测试结构:
- unit/: 单元测试
- integration/: 集成测试
- fixtures/: 测试夹具和工具

测试覆盖:
- API端点测试
- 数据转换测试
- 错误处理测试
- 流式响应测试
- 配置管理测试
"""

# 导入测试夹具
from .fixtures import *

__all__ = [
    # 测试夹具将通过 fixtures 模块的 __all__ 自动导出
]