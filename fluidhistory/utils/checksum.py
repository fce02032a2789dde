# fluidhistory/utils/checksum.py
"""历史文件的完整性校验"""

import hashlib
from typing import Dict, Union


def calculate_checksum(content: Union[str, bytes]) -> str:
    """计算内容的 SHA256 校验和"""
    if isinstance(content, str):
        content = content.encode('utf-8')
    return hashlib.sha256(content).hexdigest()


def file_map_checksum(files: Dict[str, str]) -> str:
    """
    整个 FileMap 的校验和：每个文件先求摘要，再按路径排序拼接后整体求摘要，
    因此与字典的插入顺序无关。
    """
    lines = [f"{path}\0{calculate_checksum(files[path])}" for path in sorted(files)]
    return calculate_checksum("\n".join(lines))
