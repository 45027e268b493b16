# -*- coding: utf-8 -*-
"""
Core logic of the bean counter, also known as a quincunx or Galton box.

Beans are dropped from the opening at the top of a triangular board of pegs.
Every time a bean hits a peg it falls to the left or to the right, and the
beans pile up in the slots at the bottom of the board.

In-flight beans are stored in logical coordinates: row y of the board has
y + 1 pegs and a bean's x-position is its column inside that row. For a
4-slot machine:

                     (0, 0)
              (0, 1)        (1, 1)
       (0, 2)        (1, 2)        (2, 2)
 (0, 3)       (1, 3)        (2, 3)       (3, 3)
[Slot0]       [Slot1]       [Slot2]      [Slot3]
"""
from __future__ import annotations

import logging
from collections.abc import MutableSequence, Sequence
from typing import Final, Literal, TypeAlias

from bean import BeanLike, ConfigError, _validate_positive_ints

logger = logging.getLogger(__name__)

MachineState: TypeAlias = Literal["idle", "loaded", "draining", "terminal"]
BeanIndex: TypeAlias = int

NO_BEAN_IN_YPOS: Final[int] = -1
NO_SUCH_SLOT: Final[int] = -1
DEFAULT_X_SPACING: Final[int] = 3


class BeanCounterLogic:
    """
    Step-driven bean machine.

    Loaded beans live in an ordered arena; in-flight rows and slots refer to
    them by arena index. Row `slot_count - 1` is the last peg row, a bean
    there is deposited into the slot under its column on the next step.
    """

    def __init__(
        self, slot_count: int, x_spacing: int = DEFAULT_X_SPACING
    ) -> None:
        _validate_positive_ints(
            ("slot_count", slot_count), ("x_spacing", x_spacing)
        )
        if x_spacing % 2 == 0:
            raise ConfigError(
                f"Configuration error: 'x_spacing' must be odd, got {x_spacing}."
            )
        self._slot_count: Final = slot_count
        self._x_spacing: Final = x_spacing
        self._beans: list[BeanLike] = []
        self._bean_count = 0
        self._beans_remaining = 0
        self._sum = 0
        self._in_flight: MutableSequence[BeanIndex | None] = [None] * slot_count
        self._slot_beans: MutableSequence[int] = [0] * slot_count
        self._in_slot: list[BeanIndex] = []
        self._loaded = False
        self._steps_since_load = 0

    def __repr__(self) -> str:
        return (
            f"BeanCounterLogic(slot_count={self._slot_count}, "
            f"bean_count={self._bean_count}, state={self.state!r})"
        )

    @property
    def state(self) -> MachineState:
        if not self._loaded:
            return "idle"
        if self._beans_remaining == 0 and self.in_flight_count == 0:
            return "terminal"
        return "loaded" if self._steps_since_load == 0 else "draining"

    @property
    def bean_count(self) -> int:
        return self._bean_count

    @property
    def in_flight_count(self) -> int:
        return sum(1 for idx in self._in_flight if idx is not None)

    @property
    def in_slot_count(self) -> int:
        return len(self._in_slot)

    @property
    def slot_counts(self) -> list[int]:
        return list(self._slot_beans)

    def get_slot_count(self) -> int:
        return self._slot_count

    def get_remaining_bean_count(self) -> int:
        return self._beans_remaining

    def get_in_flight_bean_x_pos(self, y_pos: int) -> int:
        if not 0 <= y_pos < self._slot_count:
            return NO_BEAN_IN_YPOS
        idx = self._in_flight[y_pos]
        return NO_BEAN_IN_YPOS if idx is None else self._beans[idx].get_x_pos()

    def get_slot_bean_count(self, i: int) -> int:
        if not 0 <= i < self._slot_count:
            return NO_SUCH_SLOT
        return self._slot_beans[i]

    def get_average_slot_bean_count(self) -> float:
        """Weighted mean slot index of the beans currently in slots."""
        beans_in_slots = sum(self._slot_beans)
        if self._bean_count == 0 or beans_in_slots == 0:
            return 0.0
        return self._sum / beans_in_slots

    def reset(self, beans: Sequence[BeanLike]) -> None:
        """Hard reset: load `beans` and start with the first one at the top."""
        self._load(list(beans))

    def repeat(self) -> None:
        """
        Scoop up every bean and run the experiment again.

        Beans in slots come first, then in-flight beans from the bottom row
        up, then the beans still waiting; each group in reverse order. Beans
        dropped by a half filter are no longer part of the experiment.
        """
        self._sum = 0
        for bean in self._beans:
            bean.reset()

        waiting: list[BeanIndex] = []
        while self._beans_remaining > 0:
            idx = self._next_bean()
            if idx is not None:
                waiting.append(idx)

        order = (
            self._in_slot[::-1]
            + [idx for idx in reversed(self._in_flight) if idx is not None]
            + waiting[::-1]
        )
        self._load([self._beans[idx] for idx in order])
        logger.debug("Repeat armed with %d beans.", self._bean_count)

    def _load(self, beans: list[BeanLike]) -> None:
        self._beans = beans
        self._bean_count = len(beans)
        self._sum = 0
        self._in_slot = []
        for bean in beans:
            bean.reset()

        self._beans_remaining = max(0, self._bean_count - 1)
        self._in_flight = [None] * self._slot_count
        if self._bean_count > 0:
            self._in_flight[0] = 0
        self._slot_beans = [0] * self._slot_count
        self._loaded = True
        self._steps_since_load = 0

    def advance_step(self) -> bool:
        """
        Advance the machine one step.

        The bean on the last row drops into its slot, every other in-flight
        bean bounces off its peg onto the next row, and a waiting bean (if
        any) enters at the top. Returns False once nothing changed, meaning
        the machine is finished.
        """
        status_change = False
        last_row = self._slot_count - 1

        landing = self._in_flight[last_row]
        if landing is not None:
            status_change = True
            x_pos = self._beans[landing].get_x_pos()
            self._slot_beans[x_pos] += 1
            self._in_slot.append(landing)
            self._sum += x_pos

        for row in range(last_row, 0, -1):
            above = self._in_flight[row - 1]
            if above is not None:
                status_change = True
                self._beans[above].choose()
            self._in_flight[row] = above

        arriving = self._next_bean()
        if arriving is not None:
            status_change = True
        self._in_flight[0] = arriving

        if status_change:
            self._steps_since_load += 1
        return status_change

    def _next_bean(self) -> BeanIndex | None:
        next_index = self._bean_count - self._beans_remaining
        if self._beans_remaining > 0:
            self._beans_remaining -= 1
        return next_index if next_index < self._bean_count else None

    def lower_half(self) -> None:
        """
        Keep the lower half of the slotted beans.

        An odd total drops (N - 1) / 2 beans, so 3 beans leave 2 behind.
        """
        self._remove_half(from_top=True)

    def upper_half(self) -> None:
        """
        Keep the upper half of the slotted beans.

        An odd total drops (N - 1) / 2 beans, so 3 beans leave 2 behind.
        """
        self._remove_half(from_top=False)

    def _remove_half(self, from_top: bool) -> None:
        if self.state != "terminal":
            logger.warning(
                "Half filter applied while machine is %s; in-flight and "
                "waiting beans are left untouched.",
                self.state,
            )
        half_to_remove = len(self._in_slot) // 2
        ordered = sorted(
            self._in_slot, key=lambda idx: self._beans[idx].get_x_pos()
        )
        if from_top:
            removed = ordered[len(ordered) - half_to_remove :]
            kept = ordered[: len(ordered) - half_to_remove]
        else:
            removed = ordered[:half_to_remove]
            kept = ordered[half_to_remove:]

        for idx in removed:
            bean = self._beans[idx]
            x_pos = bean.get_x_pos()
            self._slot_beans[x_pos] -= 1
            self._sum -= x_pos
            bean.reset()
        self._in_slot = kept

    def _get_indent(self, y_pos: int) -> int:
        step = self._x_spacing + 1
        root_indent = (self._slot_count - 1) * step // 2 + step
        return root_indent - step // 2 * y_pos

    def get_slot_string(self) -> str:
        width = self._x_spacing + 1
        return "".join(
            f"{self.get_slot_bean_count(i):>{width}d}"
            for i in range(self._slot_count)
        )

    def __str__(self) -> str:
        lines: list[str] = []
        for y_pos in range(self._slot_count):
            x_bean_pos = self.get_in_flight_bean_x_pos(y_pos)
            pegs = []
            for x_pos in range(y_pos + 1):
                spacing = (
                    self._get_indent(y_pos) if x_pos == 0 else self._x_spacing + 1
                )
                mark = 1 if x_pos == x_bean_pos else 0
                pegs.append(f"{mark:>{spacing}d}")
            lines.append("".join(pegs))
        lines.append(self.get_slot_string())
        return "\n".join(lines)


def create_machine(
    slot_count: int, x_spacing: int = DEFAULT_X_SPACING
) -> BeanCounterLogic:
    return BeanCounterLogic(slot_count, x_spacing)
