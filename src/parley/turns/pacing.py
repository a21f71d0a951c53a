import random
from typing import List, Optional

from parley.schemas.configs.turns import AutoTurnConfig
from parley.utils.string import count_words


class TurnPacer:
    """
    打字节奏模拟器

    按 "词数 / 打字速度" 估算每个轮次的延迟 (秒)，
    带随机速度浮动，长消息打字更慢，结果被钳制在 [min_delay, max_delay]。
    """
    def __init__(self, config: AutoTurnConfig, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng or random.Random()

    def delay_for(self, text: str) -> float:
        cfg = self.config
        words = count_words(text)

        variation = 1 + (self.rng.random() - 0.5) * 2 * cfg.speed_variation
        wpm = cfg.base_typing_speed * variation
        # 长消息最多慢一倍
        length_factor = min(1 + words / 50, 2)
        effective_wpm = wpm / length_factor

        delay = words / effective_wpm * 60 if effective_wpm > 0 else cfg.max_delay
        return max(cfg.min_delay, min(cfg.max_delay, delay))

    def limit_turns(self, turns: List[str], has_next: bool = False) -> List[str]:
        """
        轮次数 (含 next 占用的一轮) 超过 max_turns 时，按顺序均匀合并相邻轮次
        """
        reserved = 1 if has_next else 0
        if len(turns) + reserved <= self.config.max_turns:
            return list(turns)

        target = max(1, self.config.max_turns - reserved)
        base, extra = divmod(len(turns), target)
        merged: List[str] = []
        start = 0
        for i in range(target):
            size = base + (1 if i < extra else 0)
            merged.append(" ".join(turns[start:start + size]))
            start += size
        return merged
