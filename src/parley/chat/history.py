from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from parley.core.errors import MessageValidationError
from parley.schemas.domain.chat import ChatHistory, GroupMetadata, Message, ToolCall
from parley.utils.clock import Clock, SystemClock
from parley.utils.json import json_dumps
from parley.utils.logger import logger
from parley.utils.path import ProjectPath
from parley.utils.string import extract_reasoning, truncate_text

CONTINUE_MARKER = "[CONTINUE]"
_STORABLE_ROLES = ("user", "assistant", "tool")
_GROUP_FIELDS = ("group_id", "message_index", "total_in_group", "group_timestamp")

MessageLike = Union[Message, Dict[str, Any]]


class HistoryStore:
    """
    对话历史存储 (滑动窗口 + 时间顺序插入)

    - 序列始终按 timestamp 非递减排列；延迟投递的轮次会插到正确位置
    - 超出 history_size 时从最早的记录开始淘汰，history_size <= 0 表示不保留历史
    - system 消息不进入序列 (系统提示词由请求构建器单独持有)
    - 所有写操作失败时存储保持不变，并通过返回值告知调用方
    """
    def __init__(self, history_size: int = 50, clock: Optional[Clock] = None):
        self._history_size = history_size
        self._clock = clock or SystemClock()
        self._messages: List[Message] = []

    @property
    def history_size(self) -> int:
        return self._history_size

    @property
    def enabled(self) -> bool:
        return self._history_size > 0

    def resize(self, history_size: int):
        """调整容量，缩小时立即淘汰最早的记录"""
        self._history_size = history_size
        if history_size <= 0:
            self._messages = []
        else:
            self._trim()

    def __len__(self) -> int:
        return len(self._messages)

    # -------------------------------------------------------------------------
    # 读取
    # -------------------------------------------------------------------------

    def get(self) -> List[Message]:
        """返回历史记录的深拷贝，外部修改不会影响存储"""
        return [msg.model_copy(deep=True) for msg in self._messages]

    # -------------------------------------------------------------------------
    # 写入
    # -------------------------------------------------------------------------

    def insert(self, message: MessageLike) -> bool:
        """
        按时间顺序插入一条消息
        返回 False 表示消息被跳过 (历史关闭 / 续写标记 / 清洗后为空) 或不合法
        """
        if not self.enabled:
            return False
        try:
            prepared = self._prepare(message)
        except MessageValidationError as e:
            logger.warning(f"[History] 拒绝插入: {e}")
            return False
        if prepared is None:
            return False

        self._insert_sorted(prepared)
        self._trim()
        return True

    def add_assistant_response(
        self,
        content: Optional[str],
        compliance_violations: Optional[List[str]] = None,
        tool_calls: Optional[List[ToolCall]] = None,
        group_metadata: Optional[GroupMetadata] = None,
        reasoning: Optional[str] = None,
    ) -> bool:
        """把一条 (或一个分组片段) 助手回复写入历史"""
        if compliance_violations:
            # 违规内容同样需要保留在上下文中
            logger.warning(f"[History] 助手回复存在合规问题，仍写入历史: {', '.join(compliance_violations)}")

        if content is None and not tool_calls:
            return False

        if group_metadata is not None and group_metadata.processed_timestamp is not None:
            timestamp = group_metadata.processed_timestamp
        else:
            timestamp = self._clock.now()

        data: Dict[str, Any] = {
            "role": "assistant",
            "content": content,
            "timestamp": timestamp,
            "reasoning": reasoning or None,
            "tool_calls": list(tool_calls) if tool_calls else None,
            "compliance_violations": list(compliance_violations) if compliance_violations else None,
        }
        if group_metadata is not None:
            data.update(
                group_id=group_metadata.group_id,
                message_index=group_metadata.message_index,
                total_in_group=group_metadata.total_in_group,
                group_timestamp=group_metadata.group_timestamp,
            )
        return self.insert(data)

    def replace(self, messages: List[MessageLike], validate: bool = True) -> bool:
        """
        整体替换历史记录 (用于从外部存储导入)
        validate=True 时先校验全部条目，任何一条不合法则整体拒绝；
        通过后逐条经由 insert 写入 (清洗与排序规则同样生效)。
        validate=False 时跳过逐条清洗，只丢弃不可存储的角色并按时间稳定排序，保留最后 history_size 条。
        """
        if not self.enabled:
            logger.warning("[History] 历史记录已关闭 (history_size <= 0)，无法替换")
            return False

        if not validate:
            try:
                copied = [self._coerce(msg) for msg in messages]
            except MessageValidationError as e:
                logger.error(f"[History] 替换失败: {e}")
                return False
            now = self._clock.now()
            kept = [
                msg if msg.timestamp is not None else msg.model_copy(update={"timestamp": now})
                for msg in copied if msg.role in _STORABLE_ROLES
            ]
            if len(kept) != len(copied):
                logger.warning(f"[History] 导入时丢弃 {len(copied) - len(kept)} 条 system 消息")
            kept.sort(key=lambda m: m.timestamp)
            self._messages = kept[-self._history_size:]
            return True

        try:
            validated = [self._validate_entry(i, msg) for i, msg in enumerate(messages)]
        except MessageValidationError as e:
            logger.error(f"[History] 替换被拒绝，历史保持不变: {e}")
            return False

        previous = self._messages
        self._messages = []
        try:
            for msg in validated:
                prepared = self._prepare(msg)
                if prepared is not None:
                    self._insert_sorted(prepared)
                    self._trim()
        except MessageValidationError as e:
            self._messages = previous
            logger.error(f"[History] 替换被拒绝，历史保持不变: {e}")
            return False

        logger.debug(f"[History] 已导入 {len(self._messages)}/{len(messages)} 条记录")
        return True

    def update(self, index: int, partial: Dict[str, Any]) -> bool:
        """
        按下标局部更新一条消息
        更新助手消息的 content 时会重新提取推理内容
        """
        if not self.enabled:
            logger.warning("[History] 历史记录已关闭 (history_size <= 0)，无法更新")
            return False
        if not self._valid_index(index):
            return False

        current = self._messages[index]
        try:
            updated = self._apply_update(current, partial)
        except MessageValidationError as e:
            logger.error(f"[History] 更新第 {index} 条失败: {e}")
            return False

        if updated.timestamp != current.timestamp:
            # 时间戳变化后重新定位，保持时间顺序
            del self._messages[index]
            self._insert_sorted(updated)
        else:
            self._messages[index] = updated
        return True

    def delete(self, index: int) -> bool:
        if not self.enabled:
            logger.warning("[History] 历史记录已关闭 (history_size <= 0)，无法删除")
            return False
        if not self._valid_index(index):
            return False
        del self._messages[index]
        return True

    def clear(self) -> int:
        """清空历史，返回被清除的条数"""
        count = len(self._messages)
        self._messages = []
        if count:
            logger.info(f"[History] 已清空 {count} 条记录")
        return count

    # -------------------------------------------------------------------------
    # 分组重组
    # -------------------------------------------------------------------------

    def reconstruct_grouped(self, messages: List[Message]) -> List[Message]:
        """
        把拆分投递的分组片段还原为一条逻辑消息 (用于出站请求)
        分组出现在其第一个片段所在的位置；不完整的分组按现有片段重组。
        """
        slots: List[Union[str, Message]] = []
        groups: Dict[str, List[Message]] = {}

        for msg in messages:
            if msg.is_grouped:
                if msg.group_id not in groups:
                    groups[msg.group_id] = []
                    slots.append(msg.group_id)
                groups[msg.group_id].append(msg)
            else:
                slots.append(msg)

        result: List[Message] = []
        for slot in slots:
            if isinstance(slot, Message):
                result.append(slot.model_copy(deep=True))
            else:
                result.append(self._merge_group(groups[slot]))
        return result

    @staticmethod
    def _merge_group(fragments: List[Message]) -> Message:
        ordered = sorted(fragments, key=lambda m: m.message_index)
        first, last = ordered[0], ordered[-1]
        parts = [frag.content for frag in ordered if frag.content is not None]

        update = {name: None for name in _GROUP_FIELDS}
        update.update(
            content=" ".join(parts) if parts else None,
            timestamp=first.group_timestamp or first.timestamp,
            tool_calls=last.tool_calls,
            compliance_violations=last.compliance_violations,
        )
        return first.model_copy(deep=True, update=update)

    # -------------------------------------------------------------------------
    # 持久化
    # -------------------------------------------------------------------------

    def save(self, path: Optional[Union[str, Path]] = None):
        """持久化到磁盘 (JSON)，默认写入 data/history.json"""
        path = Path(path) if path else ProjectPath.HISTORY_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(json_dumps(ChatHistory(messages=self._messages), indent=2))
        logger.debug(f"[History] 已保存 {len(self._messages)} 条记录 -> {path.name}")

    def load(self, path: Optional[Union[str, Path]] = None) -> bool:
        """从磁盘恢复历史，文件损坏时保持当前历史不变"""
        path = Path(path) if path else ProjectPath.HISTORY_FILE
        if not path.exists():
            return False
        try:
            with open(path, "r", encoding="utf-8") as f:
                history = ChatHistory.model_validate_json(f.read())
        except (OSError, ValidationError) as e:
            logger.error(f"[History] 历史文件损坏，忽略: {e}")
            return False

        restored = self.replace(history.messages, validate=False)
        if restored:
            logger.info(f"[History] 成功恢复历史: {len(self._messages)} 条记录")
        return restored

    # -------------------------------------------------------------------------
    # 内部逻辑
    # -------------------------------------------------------------------------

    def _valid_index(self, index: int) -> bool:
        if index < 0 or index >= len(self._messages):
            logger.error(f"[History] 非法下标: {index} (当前共 {len(self._messages)} 条)")
            return False
        return True

    def _coerce(self, message: MessageLike) -> Message:
        if isinstance(message, Message):
            return message.model_copy(deep=True)
        try:
            return Message.model_validate(message)
        except ValidationError as e:
            raise MessageValidationError(str(e)) from e

    def _validate_entry(self, position: int, message: MessageLike) -> Message:
        msg = self._coerce(message)
        if msg.role not in _STORABLE_ROLES:
            raise MessageValidationError(f"entry {position}: role '{msg.role}' cannot be stored")
        for call in msg.tool_calls or []:
            if not call.id or not call.function.name:
                raise MessageValidationError(f"entry {position}: tool call requires id and function name")
        return msg

    def _prepare(self, message: MessageLike) -> Optional[Message]:
        """
        入库前的清洗
        返回 None 表示按规则跳过；不合法时抛出 MessageValidationError
        """
        msg = self._coerce(message)

        if msg.role == "system":
            raise MessageValidationError("system messages are held by the request builder, not the history")
        if msg.role == "user" and msg.content == CONTINUE_MARKER:
            return None
        if msg.role == "tool" and (not msg.content or not msg.tool_call_id):
            return None

        update: Dict[str, Any] = {}
        if msg.timestamp is None:
            update["timestamp"] = self._clock.now()

        if msg.role == "assistant":
            visible, extracted = extract_reasoning(msg.content)
            reasoning = msg.reasoning or extracted
            if not visible and not reasoning and not msg.tool_calls:
                logger.debug("[History] 跳过空的助手消息")
                return None
            update["content"] = visible
            update["reasoning"] = reasoning

        return msg.model_copy(update=update) if update else msg

    def _apply_update(self, current: Message, partial: Dict[str, Any]) -> Message:
        if current.role not in _STORABLE_ROLES:
            raise MessageValidationError(f"cannot update message with role '{current.role}'")
        new_role = partial.get("role")
        if new_role is not None and new_role not in _STORABLE_ROLES:
            raise MessageValidationError(f"cannot update message to role '{new_role}'")

        merged = current.model_dump()
        merged.update(partial)

        if merged["role"] == "assistant" and "content" in partial and isinstance(merged["content"], str):
            visible, extracted = extract_reasoning(merged["content"])
            merged["content"] = visible
            if extracted:
                merged["reasoning"] = extracted
            elif "reasoning" not in partial:
                merged["reasoning"] = None

        if merged["role"] == "tool":
            content = merged.get("content")
            if not isinstance(content, str) or not content.strip() or not merged.get("tool_call_id"):
                raise MessageValidationError("tool message requires non-empty content and tool_call_id")

        try:
            updated = Message.model_validate(merged)
        except ValidationError as e:
            raise MessageValidationError(str(e)) from e
        if updated.timestamp is None:
            updated = updated.model_copy(update={"timestamp": self._clock.now()})
        return updated

    def _insert_sorted(self, message: Message):
        # 从尾部向前扫描，插到最后一个 timestamp <= 新消息的条目之后
        position = len(self._messages)
        while position > 0 and message.timestamp < self._messages[position - 1].timestamp:
            position -= 1
        self._messages.insert(position, message)
        if position != len(self._messages) - 1:
            logger.debug(
                f"[History] 乱序插入: 位置 {position}/{len(self._messages) - 1} "
                f"({message.role}: {truncate_text(message.content, 30)})"
            )

    def _trim(self):
        """修剪历史，保持在窗口范围内"""
        if len(self._messages) > self._history_size:
            removed_count = len(self._messages) - self._history_size
            self._messages = self._messages[removed_count:]
