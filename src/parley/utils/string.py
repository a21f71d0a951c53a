import re
from typing import Optional, Tuple

# 推理模型 (DeepSeek R1 等) 的思维链分隔符
THINK_PATTERN = re.compile(r"<think>(.*?)</think>", re.DOTALL)
_MULTI_SPACE = re.compile(r"\s{2,}")

def extract_reasoning(text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    '''
    从助手回复中拆分思维链
    仅处理第一个 <think>...</think> 块：
    返回 (可见内容, 推理内容)；可见内容为空时返回 None
    '''
    if not text:
        return None, None

    match = THINK_PATTERN.search(text)
    if not match:
        return text.strip() or None, None

    reasoning = match.group(1).strip() or None
    # 移除匹配块后，修复因删除产生的连续空白
    visible = (text[:match.start()] + text[match.end():]).strip()
    visible = _MULTI_SPACE.sub(" ", visible)
    return visible or None, reasoning

def count_words(text: Optional[str]) -> int:
    """按空白切分统计词数，空文本为 0"""
    if not text:
        return 0
    return len(text.split())

def truncate_text(text: Optional[str], max_length: int = 60, suffix: str = "...") -> str:
    """截断长文本用于日志显示"""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length] + suffix
