import math

import pytest

from progression.calculator import (
    MAX_LEVEL,
    PillQuality,
    advance,
    apply_experience,
    check_advancement,
    experience_gain,
    experience_percentage,
    health_recovery,
    max_age,
    pill_quality,
    realm_label,
    requirement,
    success_rate,
)
from progression.catalog import create_character
from progression.models import Cultivation


def test_requirements_are_cumulative_and_clamped() -> None:
    assert requirement(0) == 0
    assert requirement(1) == 300
    assert requirement(2) == 900
    assert requirement(MAX_LEVEL + 5) == requirement(MAX_LEVEL)
    assert requirement(-3) == 0


def test_breakthrough_keeps_cumulative_experience() -> None:
    updated = advance(Cultivation(level=0, stage=2, experience=280), 50)
    assert updated == Cultivation(level=1, stage=0, experience=330)


def test_large_gain_advances_one_level_per_call() -> None:
    updated = advance(Cultivation(level=0, stage=0, experience=0), 5000)
    assert updated.level == 1
    assert updated.experience == 5000
    assert check_advancement(updated).level == 2
    assert check_advancement(check_advancement(updated)).level == 3


def test_zero_delta_is_a_no_op() -> None:
    cultivation = Cultivation(level=1, stage=1, experience=450)
    assert advance(cultivation, 0) is cultivation


def test_negative_delta_never_lowers_level() -> None:
    updated = advance(Cultivation(level=2, stage=1, experience=1000), -5000)
    assert updated == Cultivation(level=2, stage=1, experience=0)


def test_terminal_level_does_not_advance() -> None:
    top = Cultivation(level=MAX_LEVEL, stage=3, experience=10**7)
    assert check_advancement(top) is top
    assert advance(top, 1000).level == MAX_LEVEL


def test_apply_experience_reports_breakthrough() -> None:
    character = create_character("xiaoyan")
    character.cultivation = Cultivation(level=0, stage=2, experience=280)
    assert apply_experience(character, 50) is True
    assert character.cultivation.level == 1
    assert apply_experience(character, 10) is False


@pytest.mark.parametrize(
    ("cultivation", "expected"),
    [
        (Cultivation(level=0, experience=150), 50.0),
        (Cultivation(level=1, experience=450), 50.0),
        (Cultivation(level=MAX_LEVEL, experience=0), 100.0),
        (Cultivation(level=0, experience=-10), 0.0),
        (Cultivation(level=0, experience=float("nan")), 0.0),
        (Cultivation(level="high", experience=10), 0.0),
    ],
)
def test_experience_percentage(cultivation: Cultivation, expected: float) -> None:
    assert experience_percentage(cultivation) == pytest.approx(expected)


def test_experience_percentage_accepts_character() -> None:
    character = create_character("xiaoyan")
    character.cultivation.experience = 30
    assert experience_percentage(character) == pytest.approx(10.0)


def test_experience_gain_scales_with_comprehension() -> None:
    assert experience_gain(100, 10) == 150
    assert experience_gain(100, 0) == 100
    assert experience_gain(0, 20) == 0
    assert experience_gain(-5, 20) == -5


def test_success_rate_is_clamped() -> None:
    assert success_rate(0.5, 0, 0, 0) == pytest.approx(0.5)
    assert success_rate(0.7, 8, 9, 8) == 1.0
    assert success_rate(-2.0, 0, 0, 0) == 0.1
    assert success_rate(float("nan"), 5, 5, 5) == 0.1


@pytest.mark.parametrize(
    ("score", "quality"),
    [
        (95, PillQuality.PERFECT),
        (90, PillQuality.PERFECT),
        (89.9, PillQuality.HIGH),
        (70, PillQuality.HIGH),
        (50, PillQuality.MEDIUM),
        (49, PillQuality.LOW),
        (-20, PillQuality.LOW),
        (250, PillQuality.PERFECT),
        (math.nan, PillQuality.LOW),
        ("not a number", PillQuality.LOW),
    ],
)
def test_pill_quality_thresholds(score, quality: PillQuality) -> None:
    assert pill_quality(score) is quality


def test_quality_modifiers() -> None:
    assert PillQuality.PERFECT.invalid_chance == 0.0
    assert PillQuality.PERFECT.effect_multiplier == 1.5
    assert PillQuality.LOW.invalid_chance == 0.5


def test_health_recovery_and_lifespan() -> None:
    assert health_recovery(8) == 4
    assert health_recovery(5) == 2
    assert health_recovery(-3) == 0
    assert max_age(0) == 80
    assert max_age(-1) == 100
    assert max_age(42) == 100


def test_realm_label() -> None:
    assert realm_label(Cultivation(level=1, stage=2)) == "Qi Refining (Late)"
    assert realm_label(Cultivation(level=0, stage=9)) == "Mortal (Perfected)"
