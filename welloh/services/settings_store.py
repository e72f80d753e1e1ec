"""File-based chart display preferences."""

import json
import logging
import re
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Dict, Union

from ..errors import ValidationError

logger = logging.getLogger(__name__)

LINE_TYPES = ("monotone", "linear", "step")
_HEX_COLOR_RE = re.compile(r"#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})")

# File keys use the camelCase names the front end reads
_FILE_KEYS = {
    "revenueColor": "revenue_color",
    "profitColor": "profit_color",
    "lineType": "line_type",
    "showGrid": "show_grid",
}


@dataclass(frozen=True)
class ChartSettings:
    revenue_color: str = "#4f46e5"
    profit_color: str = "#10b981"
    line_type: str = "monotone"
    show_grid: bool = True

    def to_dict(self) -> Dict[str, Any]:
        values = asdict(self)
        return {file_key: values[attr] for file_key, attr in _FILE_KEYS.items()}


def _valid(attr: str, value: Any) -> bool:
    if attr in ("revenue_color", "profit_color"):
        return isinstance(value, str) and bool(_HEX_COLOR_RE.fullmatch(value))
    if attr == "line_type":
        return value in LINE_TYPES
    if attr == "show_grid":
        return isinstance(value, bool)
    return False


def merge_settings(base: ChartSettings, data: Dict[str, Any], strict: bool = False) -> ChartSettings:
    """
    Overlay ``data`` (camelCase or snake_case keys) on ``base``.

    Invalid or unknown keys are skipped, or rejected with ``ValidationError``
    when ``strict`` is set.
    """
    changes = {}
    for key, value in data.items():
        attr = _FILE_KEYS.get(key, key)
        if attr not in _FILE_KEYS.values() or not _valid(attr, value):
            if strict:
                raise ValidationError(f"Invalid chart setting: {key}={value!r}")
            logger.debug("Ignoring chart setting %s=%r", key, value)
            continue
        changes[attr] = value
    return replace(base, **changes)


class ChartSettingsStore:
    """JSON file holding one ``ChartSettings``."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> ChartSettings:
        """Absent or corrupt file -> defaults, merged with any valid keys."""
        if not self.path.exists():
            return ChartSettings()
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable chart settings %s, using defaults: %s", self.path, exc)
            return ChartSettings()
        if not isinstance(data, dict):
            logger.warning("Chart settings %s is not an object, using defaults", self.path)
            return ChartSettings()
        return merge_settings(ChartSettings(), data)

    def save(self, settings: ChartSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(settings.to_dict(), fh, ensure_ascii=True, indent=2)
        tmp_path.replace(self.path)

    def update(self, changes: Dict[str, Any]) -> ChartSettings:
        settings = merge_settings(self.load(), changes, strict=True)
        self.save(settings)
        logger.info("Chart settings updated: %s", ", ".join(sorted(changes)))
        return settings
