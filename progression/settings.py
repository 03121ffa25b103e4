"""Player-facing settings flags stored with each save."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


@dataclass
class Settings:
    """Display toggles and the quick-mode pacing option."""

    show_conditions: bool = True
    hide_high_risk_options: bool = False
    show_attribute_changes: bool = True
    show_experience_changes: bool = True
    show_attribute_bonus_values: bool = False
    quick_mode: bool = False
    quick_mode_multiplier: float = 0.7
    quick_mode_difficulty: float = 0.5

    def clamp(self) -> "Settings":
        self.show_conditions = bool(self.show_conditions)
        self.hide_high_risk_options = bool(self.hide_high_risk_options)
        self.show_attribute_changes = bool(self.show_attribute_changes)
        self.show_experience_changes = bool(self.show_experience_changes)
        self.show_attribute_bonus_values = bool(self.show_attribute_bonus_values)
        self.quick_mode = bool(self.quick_mode)
        self.quick_mode_multiplier = _clamp(float(self.quick_mode_multiplier), 0.1, 1.0)
        self.quick_mode_difficulty = _clamp(float(self.quick_mode_difficulty), 0.0, 1.0)
        return self

    @property
    def experience_scale(self) -> float:
        if not self.quick_mode:
            return 1.0
        return 1.0 / self.quick_mode_multiplier

    def copy(self) -> "Settings":
        return Settings.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "Settings":
        if not isinstance(data, dict):
            return cls()

        def _as_float(key: str, default: float) -> float:
            try:
                return float(data.get(key, default))
            except (TypeError, ValueError):
                return default

        def _as_bool(key: str, default: bool) -> bool:
            value = data.get(key, default)
            if isinstance(value, bool):
                return value
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in {"true", "1", "yes", "on"}:
                    return True
                if lowered in {"false", "0", "no", "off"}:
                    return False
            return bool(value) if value is not None else default

        settings = cls(
            show_conditions=_as_bool("show_conditions", True),
            hide_high_risk_options=_as_bool("hide_high_risk_options", False),
            show_attribute_changes=_as_bool("show_attribute_changes", True),
            show_experience_changes=_as_bool("show_experience_changes", True),
            show_attribute_bonus_values=_as_bool("show_attribute_bonus_values", False),
            quick_mode=_as_bool("quick_mode", False),
            quick_mode_multiplier=_as_float("quick_mode_multiplier", 0.7),
            quick_mode_difficulty=_as_float("quick_mode_difficulty", 0.5),
        )
        return settings.clamp()
