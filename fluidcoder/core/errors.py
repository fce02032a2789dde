# fluidcoder/core/errors.py
"""
FluidCoder 异常定义。

可恢复的问题（截断后部分恢复、补丁未命中、删除不存在的文件）不是异常，
而是以结构化数据返回；只有完全没有可用内容或非法的操作序列才抛出。
"""


class FluidCoderError(Exception):
    """所有 FluidCoder 异常的基类"""
    pass


class HardParseFailure(FluidCoderError):
    """响应中找不到任何可识别的文件内容"""

    def __init__(self, message: str = "No recognizable file content in response", response_length: int = 0):
        super().__init__(message)
        self.response_length = response_length


class GenerationCancelled(FluidCoderError):
    """当前生成令牌已被取消或被新的请求取代"""
    pass


class ReviewStateError(FluidCoderError):
    """没有待审阅的变更时调用了 confirm / cancel"""
    pass


class ConfigError(FluidCoderError):
    """配置文件无法读取或内容非法"""
    pass
