import json
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

class ParleyJSONEncoder(json.JSONEncoder):
    """
    历史记录 / 调试输出用的 JSON Encoder
    支持: Pydantic 模型 (省略 None 字段), datetime, Enum, Path
    """
    def default(self, obj: Any) -> Any:
        # Pydantic v2 模型 (Message / ChatHistory / 事件)
        if hasattr(obj, "model_dump"):
            return obj.model_dump(mode="json", exclude_none=True)

        # 时间一律输出 ISO 8601 (带时区)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()

        if isinstance(obj, Enum):
            return obj.value

        if isinstance(obj, Path):
            return obj.as_posix()

        return super().default(obj)

def json_dumps(obj: Any, **kwargs) -> str:
    """使用 ParleyJSONEncoder 序列化，默认保留非 ASCII 字符"""
    kwargs.setdefault("cls", ParleyJSONEncoder)
    kwargs.setdefault("ensure_ascii", False)
    return json.dumps(obj, **kwargs)
