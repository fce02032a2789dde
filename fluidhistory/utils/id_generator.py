# fluidhistory/utils/id_generator.py
import time
import uuid


def generate_entry_id() -> str:
    """历史条目 ID，格式: hst_{unix_timestamp}_{random}"""
    return f"hst_{int(time.time())}_{uuid.uuid4().hex[:6]}"


def generate_timestamp() -> float:
    return time.time()
