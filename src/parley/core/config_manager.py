import yaml
import os
import copy
from pathlib import Path
from typing import Dict, Any, Callable, List, Optional
from pydantic import ValidationError
from parley.schemas.configs import (
    ParleySettings, AppConfig, LoggingConfig, HistoryConfig, ChatConfig, AutoTurnConfig
)
from parley.core.errors import ConfigurationError
from parley.utils.env import coerce_env_value
from parley.utils.logger import logger, setup_logger
from parley.utils.path import ProjectPath
from dotenv import load_dotenv

# 加载 .env 环境变量文件，使其可用于 os.getenv
load_dotenv()

ENV_PREFIX = "PARLEY"

class ConfigManager:
    """
    统一配置管理中心 (Single Source of Truth)

    加载顺序 (后者覆盖前者):
    1. ParleySettings 的默认值
    2. configs/settings.yaml
    3. configs/secrets.yaml (API Key 等敏感信息)
    4. 环境变量 PARLEY_<SECTION>_<KEY> (例如 PARLEY_AUTO_TURN_ENABLED=true)
    """
    def __init__(self, config_dir: Optional[Path] = None, env_prefix: str = ENV_PREFIX):
        self.config_dir = Path(config_dir) if config_dir else ProjectPath.CONFIGS_DIR
        self.env_prefix = env_prefix
        self._observers: List[Callable[[], None]] = []

        # 内存中的原始配置字典
        self.raw: Dict[str, Any] = {}
        self.settings: ParleySettings = ParleySettings()

        # 执行初次加载
        try:
            self._load_and_build()
            logger.debug(f"配置管理器初始化完成. 环境: {self.app.app_name} v{self.app.version}")
        except ValidationError as e:
            logger.critical(f"系统配置加载失败: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    # 快捷引用 (Properties)
    @property
    def app(self) -> AppConfig:
        return self.settings.app

    @property
    def logging(self) -> LoggingConfig:
        return self.settings.logging

    @property
    def history(self) -> HistoryConfig:
        return self.settings.history

    @property
    def chat(self) -> ChatConfig:
        return self.settings.chat

    @property
    def auto_turn(self) -> AutoTurnConfig:
        return self.settings.auto_turn

    # -------------------------------------------------------------------------
    # 公共 API (Public API)
    # -------------------------------------------------------------------------

    def get(self) -> ParleySettings:
        """获取当前配置树"""
        return self.settings

    def add_observer(self, callback: Callable[[], None]):
        """
        注册配置变更监听器。
        当配置通过 update 或 reload 发生变化时，会调用此回调函数。
        """
        self._observers.append(callback)

    def apply_logging(self):
        """按 logging 配置重新初始化 loguru 的输出端"""
        setup_logger(
            level=self.logging.level,
            file_enabled=self.logging.file_enabled,
            file_level=self.logging.file_level
        )

    def update(self, key_path: str, value: Any, save_to_disk: bool = True):
        """
        更新单个配置项 (点分路径, 如 "auto_turn.max_turns")
        先对整棵配置树做预校验，非法值抛出 ConfigurationError 且不落盘。
        """
        # 1. 预校验
        test_raw = copy.deepcopy(self.raw)
        self._set_nested_value(test_raw, key_path, value)
        try:
            ParleySettings(**test_raw)
        except ValidationError as e:
            logger.error(f"无效的配置值 '{value}' (Key: {key_path}): {e}")
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        # 2. 持久化
        if save_to_disk:
            self._save_to_source_file(key_path, value)
            logger.info(f"配置已持久化: {key_path} = {value}")
            # 3. 热重载 (从磁盘重新读取)
            self.reload()
        else:
            self.raw = test_raw
            self.settings = ParleySettings(**test_raw)
            self._notify_observers()

    def reload(self):
        """
        完全重载配置。
        从磁盘重新读取所有配置文件，重新应用环境变量，并重建配置对象。
        成功后会触发所有观察者的回调。
        """
        try:
            self._load_and_build()
        except (ValidationError, yaml.YAMLError) as e:
            # 保持最后一次已知的良好状态
            logger.error(f"热重载失败: {e}")
            return
        self._notify_observers()
        logger.debug("配置系统已热重载")

    # -------------------------------------------------------------------------
    # 内部逻辑：加载与构建 (Internal: Loading Logic)
    # -------------------------------------------------------------------------

    def _load_and_build(self):
        raw = ParleySettings().model_dump(mode="json")
        self._merge_yaml(raw, self.config_dir / "settings.yaml")
        self._merge_yaml(raw, self.config_dir / "secrets.yaml")

        # PARLEY_AUTO_TURN_ENABLED -> auto_turn.enabled
        self._apply_env_overrides(raw, prefix=self.env_prefix)

        new_settings = ParleySettings(**raw)

        self.raw = raw
        self.settings = new_settings

    def _save_to_source_file(self, key_path: str, value: Any):
        """写回 settings.yaml (只修改目标键，保留文件中其余内容)"""
        target_file = self.config_dir / "settings.yaml"

        data = {}
        if target_file.exists():
            with open(target_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

        self._set_nested_value(data, key_path, value)

        target_file.parent.mkdir(parents=True, exist_ok=True)
        with open(target_file, "w", encoding="utf-8") as f:
            yaml.dump(data, f, allow_unicode=True, sort_keys=False)

    def _notify_observers(self):
        """通知所有注册的观察者配置已变更"""
        for callback in self._observers:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Config observer callback failed: {e}")

    # -------------------------------------------------------------------------
    # 辅助方法 (Helpers)
    # -------------------------------------------------------------------------

    def _merge_yaml(self, target: dict, path: Path):
        """读取并合并 YAML 文件到目标字典中"""
        if not path.exists():
            return
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.warning(f"配置文件 {path.name} 的根节点不是映射，已忽略")
            return
        self._deep_merge(target, data)

    def _set_nested_value(self, d: dict, key_path: str, value: Any):
        """
        根据点分路径设置嵌套字典的值。
        例如: "a.b.c" -> d['a']['b']['c'] = value
        """
        keys = key_path.split('.')
        current = d
        for k in keys[:-1]:
            current = current.setdefault(k, {})
        current[keys[-1]] = value

    def _deep_merge(self, source: dict, dest: dict):
        """
        递归合并两个字典。
        将 dest 中的内容合并到 source 中，如果是字典则递归合并，否则直接覆盖。
        """
        for key, value in dest.items():
            if isinstance(value, dict) and key in source and isinstance(source[key], dict):
                self._deep_merge(source[key], value)
            else:
                source[key] = value

    def _apply_env_overrides(self, data: dict, prefix: str):
        """
        递归应用环境变量覆盖配置。
        环境变量格式为：前缀_层级_键名 (例如 PARLEY_CHAT_TEMPERATURE)
        """
        for key, value in list(data.items()):
            current_prefix = f"{prefix}_{key.upper()}"
            if isinstance(value, dict):
                self._apply_env_overrides(value, current_prefix)
                continue

            env_val = os.getenv(current_prefix)
            if env_val is not None:
                data[key] = coerce_env_value(env_val)
            elif key == "api_key" and prefix.endswith("_CHAT") and not value:
                # 兜底读取标准的 OPENAI_API_KEY
                fallback = os.getenv("OPENAI_API_KEY")
                if fallback:
                    data[key] = fallback

# 全局单例实例
global_config = ConfigManager()
