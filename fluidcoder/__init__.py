# fluidcoder/__init__.py
"""
FluidCoder - 把模型输出的多文件响应转换为一致的、可审阅、可回滚的项目状态。
"""

__version__ = "0.1.0"
