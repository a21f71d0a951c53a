from .logger import logger
from .path import ProjectPath
from .async_ops import maybe_await, run_in_background, Timer
from .clock import Clock, SystemClock, VirtualClock
from .string import extract_reasoning, count_words, truncate_text
from .json import json_dumps

__all__ = [
    "logger",
    "ProjectPath",
    "maybe_await", "run_in_background", "Timer",
    "Clock", "SystemClock", "VirtualClock",
    "extract_reasoning", "count_words", "truncate_text",
    "json_dumps"
]
