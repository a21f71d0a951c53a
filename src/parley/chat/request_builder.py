from typing import Any, Dict, List, Optional, Union

from parley.chat.history import HistoryStore
from parley.core.errors import ConfigurationError
from parley.schemas.configs.turns import ChatConfig
from parley.schemas.domain.chat import Message

FOLLOW_UP_MAX_TOKENS = 150

MessageLike = Union[Message, Dict[str, Any]]


class ChatRequestBuilder:
    """
    出站请求构建器

    消息顺序: [系统提示词] + 重组后的历史窗口 + 本次新消息
    历史窗口大小为 history_size 减去新消息条数。
    """
    def __init__(self, chat_config: ChatConfig, history: HistoryStore):
        self.config = chat_config
        self.history = history

    def update_config(self, chat_config: ChatConfig):
        self.config = chat_config

    def validate(self):
        if not self.config.model:
            raise ConfigurationError("chat.model must be configured before sending requests")
        if not self.config.system_prompt:
            raise ConfigurationError("chat.system_prompt must be configured before sending requests")

    def system_message(self) -> Dict[str, Any]:
        return {"role": "system", "content": self.config.system_prompt}

    def build_messages(self, new_messages: List[MessageLike]) -> List[Dict[str, Any]]:
        self.validate()
        payload = [self.system_message()]
        payload.extend(msg.to_payload() for msg in self._history_window(len(new_messages)))
        payload.extend(self._to_payload(msg) for msg in new_messages)
        return payload

    def build_request(self, new_messages: List[MessageLike], **overrides) -> Dict[str, Any]:
        """
        合并配置中的模型参数与调用方覆盖项，生成 chat-completion 请求体
        值为 None 的参数不会出现在请求体中
        """
        request = self._base_parameters()
        request.update(overrides)
        request["messages"] = self.build_messages(new_messages)
        return self._finalize(request)

    def build_follow_up_request(self, **overrides) -> Dict[str, Any]:
        """追问请求：只携带历史，不追加新消息，限制输出长度且不走流式"""
        self.validate()
        request = self._base_parameters()
        request.update(overrides)

        messages = [self.system_message()]
        messages.extend(msg.to_payload() for msg in self._history_window(0))
        request["messages"] = messages

        request["max_tokens"] = min(request.get("max_tokens") or FOLLOW_UP_MAX_TOKENS, FOLLOW_UP_MAX_TOKENS)
        request["stream"] = False
        return self._finalize(request)

    # -------------------------------------------------------------------------
    # 内部逻辑
    # -------------------------------------------------------------------------

    def _history_window(self, reserved: int) -> List[Message]:
        """
        取最近 history_size - reserved 条原始记录并重组分组
        窗口边界切断的分组会向前补齐其余片段，避免发出半截的合并消息
        """
        available = self.history.history_size - reserved
        if available <= 0 or len(self.history) == 0:
            return []

        messages = self.history.get()
        start = max(0, len(messages) - available)
        window_groups = {msg.group_id for msg in messages[start:] if msg.is_grouped}
        if window_groups:
            head = [msg for msg in messages[:start] if msg.is_grouped and msg.group_id in window_groups]
            window = head + messages[start:]
        else:
            window = messages[start:]
        return self.history.reconstruct_grouped(window)

    def _base_parameters(self) -> Dict[str, Any]:
        cfg = self.config
        params: Dict[str, Any] = {
            "model": cfg.model,
            "temperature": cfg.temperature,
            "top_p": cfg.top_p,
            "max_tokens": cfg.max_tokens,
            "stop": cfg.stop,
            "stream": cfg.stream,
            "compliance": cfg.compliance,
            "autoTurn": cfg.auto_turn,
            "tools": cfg.tools,
        }
        if cfg.reasoning:
            params["reasoning"] = True
            params["show_reasoning"] = True
        if cfg.tools:
            params["tool_choice"] = "none" if cfg.tool_choice == "none" else (cfg.tool_choice or "auto")
        elif cfg.tool_choice is not None:
            params["tool_choice"] = cfg.tool_choice
        return params

    @staticmethod
    def _finalize(request: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in request.items() if value is not None}

    @staticmethod
    def _to_payload(message: MessageLike) -> Dict[str, Any]:
        if isinstance(message, Message):
            return message.to_payload()
        return dict(message)
