import os
import sys
from pathlib import Path
from typing import Union
from parley.utils.env import IS_PRODUCTION

# 识别项目根目录的锚点 (任意一个存在即可)
_ROOT_MARKERS = ("pyproject.toml", "configs", ".env")


def _resolve_root() -> Path:
    """
    定位 parley 的工作根目录:
    1. PARLEY_HOME 环境变量 (显式指定，嵌入到其他应用时使用)
    2. 打包运行 -> 可执行文件所在目录
    3. 源码运行 -> 自本文件向上查找锚点
    4. 当前工作目录
    """
    home = os.getenv("PARLEY_HOME")
    if home:
        return Path(home).expanduser().resolve()

    if IS_PRODUCTION:
        return Path(sys.executable).parent.resolve()

    for parent in Path(__file__).resolve().parents:
        if any((parent / marker).exists() for marker in _ROOT_MARKERS):
            return parent

    return Path.cwd()


class ProjectPath:
    """运行期目录 (配置 / 日志 / 历史记录)，均不在导入时创建"""
    PROJECT_ROOT: Path = _resolve_root()
    CONFIGS_DIR: Path = PROJECT_ROOT / "configs"
    LOGS_DIR: Path = PROJECT_ROOT / "logs"
    DATA_DIR: Path = PROJECT_ROOT / "data"

    HISTORY_FILE: Path = DATA_DIR / "history.json"


def get_log_path(filename: str = "parley.log") -> Path:
    ProjectPath.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    return ProjectPath.LOGS_DIR / filename

def normalize_path(path: Union[str, Path]) -> str:
    """loguru 的文件 sink 统一使用正斜杠绝对路径"""
    return Path(path).resolve().as_posix()

__all__ = [
    "ProjectPath",
    "get_log_path",
    "normalize_path"
]
