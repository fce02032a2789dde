# fluidcontext/__init__.py
"""
FluidContext 库 - 记录“上一次发给模型的文件”，计算下一轮提示词需要发送的增量。
"""

from .core.models import FileFingerprint, FileDelta
from .core.tracker import FileContextTracker
from .core.registry import ContextTrackerRegistry

__all__ = ['FileFingerprint', 'FileDelta', 'FileContextTracker', 'ContextTrackerRegistry']
