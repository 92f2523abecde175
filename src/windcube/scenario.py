import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Sequence[str]]

_MISSING = object()


def split_path(path: PathLike) -> List[str]:
    if isinstance(path, str):
        return [key for key in path.split(".") if key]
    return [str(key) for key in path]


class ScenarioDocument:
    """
    The nested scenario settings/simulation document the pipeline reads from.
    Paths are key lists (`['settings', 'general', 'projectLife']`) or
    dot-notated strings. List levels are indexed with numeric keys.
    """

    def __init__(self, data: Dict[str, Any]):
        if not isinstance(data, dict):
            raise TypeError(f"Scenario document must be a dict. Received: {type(data).__name__}")
        self.data = data
        self.version = 0

    @classmethod
    def from_json_file(cls, file_path: Union[str, Path]) -> "ScenarioDocument":
        file_path = Path(file_path)
        logger.info(f"[Scenario] Loading scenario document from: {file_path}")
        with open(file_path, "r", encoding="utf-8") as f:
            return cls(json.load(f))

    def get_value_by_path(self, path: PathLike, default: Any = _MISSING) -> Any:
        """
        Walks `path` through the document. Raises KeyError naming the missing
        key unless a `default` is given.
        """
        keys = split_path(path)
        if not keys:
            raise KeyError("An empty path cannot be resolved.")

        current_level: Any = self.data
        for key in keys:
            if isinstance(current_level, dict) and key in current_level:
                current_level = current_level[key]
            elif isinstance(current_level, list) and key.lstrip("-").isdigit() and -len(current_level) <= int(key) < len(current_level):
                current_level = current_level[int(key)]
            else:
                if default is not _MISSING:
                    return default
                raise KeyError(
                    f"Failed to find key '{key}' in scenario document. Full lookup path: '{'.'.join(keys)}'."
                )
        return current_level

    def has_path(self, path: PathLike) -> bool:
        sentinel = object()
        return self.get_value_by_path(path, default=sentinel) is not sentinel

    def set_value_by_path(self, path: PathLike, value: Any) -> None:
        """Writes `value`, creating intermediate dicts. Bumps the document version."""
        keys = split_path(path)
        if not keys:
            raise KeyError("An empty path cannot be written.")
        current_level = self.data
        for key in keys[:-1]:
            next_level = current_level.get(key)
            if not isinstance(next_level, dict):
                next_level = {}
                current_level[key] = next_level
            current_level = next_level
        current_level[keys[-1]] = value
        self.version += 1
