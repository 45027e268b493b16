# -*- coding: utf-8 -*-
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import (
    Any,
    Final,
    Literal,
    Protocol,
    Tuple,
    TypeAlias,
    runtime_checkable,
)

import numpy as np

BeanMode: TypeAlias = Literal["luck", "skill"]

VALID_BEAN_MODES: Final[frozenset[str]] = frozenset({"luck", "skill"})
LUCK_RIGHT_PROBABILITY: Final[float] = 0.5


class SimulationError(Exception):
    pass


class ConfigError(ValueError):
    pass


def _validate_positive_ints(*named_values: Tuple[str, Any]) -> None:
    for name, value in named_values:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ConfigError(
                f"Configuration error: '{name}' must be a positive integer, got {value}."
            )


def _validate_non_negative_ints(*named_values: Tuple[str, Any]) -> None:
    for name, value in named_values:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigError(
                f"Configuration error: '{name}' must be a non-negative integer, got {value}."
            )


def _validate_bean_mode(mode: Any) -> None:
    if mode not in VALID_BEAN_MODES:
        raise ConfigError(
            f"Invalid bean mode '{mode}'. Must be one of {sorted(VALID_BEAN_MODES)}."
        )


@runtime_checkable
class BeanLike(Protocol):
    def choose(self) -> None:
        ...

    def get_x_pos(self) -> int:
        ...

    def reset(self) -> None:
        ...


def draw_skill_level(slot_count: int, rng: np.random.Generator) -> int:
    """
    Draw a bean's fixed aiming skill.

    The level is normal around the middle slot with the spread of a fair
    binomial over the same number of slots, rounded and clamped so the bean
    always lands inside the board.
    """
    average = (slot_count - 1) * 0.5
    stdev = math.sqrt(slot_count * 0.5 * (1 - 0.5))
    level = int(round(rng.normal() * stdev + average))
    return min(max(level, 0), slot_count - 1)


@dataclass(eq=False)
class Bean:
    """
    A single bean falling through the board.

    `x_pos` is the column inside the bean's current row; a left bounce keeps
    the column, a right bounce increments it. Luck beans flip a fair coin on
    every peg. Skill beans go right on their first `skill_level` pegs and
    left afterwards, so the same bean always ends in the same slot.
    """

    slot_count: int
    mode: BeanMode = "luck"
    rng: np.random.Generator = field(
        default_factory=np.random.default_rng, repr=False
    )
    skill_level: int | None = None
    _x_pos: int = field(init=False, default=0)
    _skill_remaining: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        _validate_positive_ints(("slot_count", self.slot_count))
        _validate_bean_mode(self.mode)

        if self.mode == "skill":
            if self.skill_level is None:
                self.skill_level = draw_skill_level(self.slot_count, self.rng)
            else:
                _validate_non_negative_ints(("skill_level", self.skill_level))
                if self.skill_level >= self.slot_count:
                    raise ConfigError(
                        f"Configuration error: 'skill_level' must be less than "
                        f"slot_count ({self.slot_count}), got {self.skill_level}."
                    )
        self.reset()

    @property
    def is_luck(self) -> bool:
        return self.mode == "luck"

    def choose(self) -> None:
        if self.is_luck:
            self._choose_by_luck()
        else:
            self._choose_by_skill()

    def _choose_by_luck(self) -> None:
        if self.rng.random() < LUCK_RIGHT_PROBABILITY:
            self._x_pos += 1

    def _choose_by_skill(self) -> None:
        if self._skill_remaining > 0:
            self._x_pos += 1
            self._skill_remaining -= 1

    def get_x_pos(self) -> int:
        return self._x_pos

    def reset(self) -> None:
        self._x_pos = 0
        self._skill_remaining = self.skill_level or 0


def create_bean(
    slot_count: int,
    mode: BeanMode,
    rng: np.random.Generator | None = None,
    skill_level: int | None = None,
) -> Bean:
    if rng is None:
        return Bean(slot_count, mode, skill_level=skill_level)
    return Bean(slot_count, mode, rng, skill_level)
