# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import math
import sys
import time
import traceback
import unittest
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    Callable,
    Final,
    Literal,
    TypeAlias,
)

try:
    import numpy as np
    import numpy.typing as npt
    import scipy.stats as stats
except ImportError as import_error:
    print(
        f"Error: Missing dependencies -> {import_error}. "
        "Please run: pip install numpy scipy"
    )
    sys.exit(1)

from bean import (
    Bean,
    BeanMode,
    ConfigError,
    SimulationError,
    _validate_bean_mode,
    _validate_non_negative_ints,
    _validate_positive_ints,
    create_bean,
)
from bean_counter_logic import BeanCounterLogic, create_machine

logger = logging.getLogger(__name__)

NDArrayF64: TypeAlias = npt.NDArray[np.float64]
HalfFilter: TypeAlias = Literal["none", "lower", "upper"]
HarnessMode: TypeAlias = Literal["single", "exhaustive"]

FAIR_BOUNCE_PROBABILITY: Final[float] = 0.5
DEFAULT_SEED_FUNC: Callable[[], int] = lambda: int(
    time.time() * 1_000_000
) % (2**32)

EXIT_OK: Final[int] = 0
EXIT_TESTS_FAILED: Final[int] = 1
EXIT_CONFIG_ERROR: Final[int] = 2
EXIT_UNEXPECTED_ERROR: Final[int] = 3
EXIT_BAD_ARGUMENTS: Final[int] = 4
EXIT_SIMULATION_ERROR: Final[int] = 5


@dataclass(frozen=True)
class BeanCounterConfig:
    SLOT_COUNT: Final[int] = 10
    BEAN_COUNT: Final[int] = 400
    MODE: Final[BeanMode] = "luck"
    DEBUG: Final[bool] = False
    SEED: int | None = field(default_factory=DEFAULT_SEED_FUNC)
    SHARED_RNG: Final[bool] = False
    X_SPACING: Final[int] = 3
    REPEATS: Final[int] = 0
    HALF_FILTER: Final[HalfFilter] = "none"
    LOG_FORMAT: Final[str] = "%(levelname)s: %(message)s"

    def __post_init__(self) -> None:
        _validate_positive_ints(
            ("SLOT_COUNT", self.SLOT_COUNT), ("X_SPACING", self.X_SPACING)
        )
        _validate_non_negative_ints(
            ("BEAN_COUNT", self.BEAN_COUNT), ("REPEATS", self.REPEATS)
        )
        _validate_bean_mode(self.MODE)
        if self.X_SPACING % 2 == 0:
            raise ConfigError(
                f"Configuration error: 'X_SPACING' must be odd, got {self.X_SPACING}."
            )
        valid_filters: set[HalfFilter] = {"none", "lower", "upper"}
        if self.HALF_FILTER not in valid_filters:
            raise ConfigError(
                f"Invalid half filter '{self.HALF_FILTER}'. Must be one of {sorted(valid_filters)}."
            )


@dataclass(frozen=True)
class HarnessConfig:
    TEST_MODE: Final[HarnessMode] = "exhaustive"
    SINGLE_SLOT_COUNT: Final[int] = 5
    SINGLE_BEAN_COUNT: Final[int] = 3
    SINGLE_MODE: Final[BeanMode] = "luck"
    SLOT_COUNT_RANGE: Final[tuple[int, int]] = (1, 5)
    BEAN_COUNT_RANGE: Final[tuple[int, int]] = (0, 3)
    MODES: tuple[BeanMode, ...] = ("luck", "skill")
    SEED: Final[int] = 42

    def __post_init__(self) -> None:
        if self.TEST_MODE not in ("single", "exhaustive"):
            raise ConfigError(
                f"Invalid test mode '{self.TEST_MODE}'. Must be 'single' or 'exhaustive'."
            )
        _validate_positive_ints(
            ("SINGLE_SLOT_COUNT", self.SINGLE_SLOT_COUNT),
            ("SLOT_COUNT_RANGE low", self.SLOT_COUNT_RANGE[0]),
        )
        _validate_non_negative_ints(
            ("SINGLE_BEAN_COUNT", self.SINGLE_BEAN_COUNT),
            ("BEAN_COUNT_RANGE low", self.BEAN_COUNT_RANGE[0]),
        )
        _validate_bean_mode(self.SINGLE_MODE)
        for mode in self.MODES:
            _validate_bean_mode(mode)
        if not self.MODES:
            raise ConfigError("At least one bean mode must be specified in MODES.")
        for name, (low, high) in (
            ("SLOT_COUNT_RANGE", self.SLOT_COUNT_RANGE),
            ("BEAN_COUNT_RANGE", self.BEAN_COUNT_RANGE),
        ):
            if low > high:
                raise ConfigError(
                    f"Configuration error: '{name}' lower bound {low} exceeds upper bound {high}."
                )

    def cases(self) -> list[tuple[int, int, BeanMode]]:
        if self.TEST_MODE == "single":
            return [
                (self.SINGLE_SLOT_COUNT, self.SINGLE_BEAN_COUNT, self.SINGLE_MODE)
            ]
        slot_low, slot_high = self.SLOT_COUNT_RANGE
        bean_low, bean_high = self.BEAN_COUNT_RANGE
        return [
            (slot_count, bean_count, mode)
            for slot_count in range(slot_low, slot_high + 1)
            for bean_count in range(bean_low, bean_high + 1)
            for mode in self.MODES
        ]


def create_beans(config: BeanCounterConfig) -> list[Bean]:
    """
    Build the beans for one experiment.

    With SHARED_RNG every bean draws from a single generator, so results
    depend on the order beans are stepped. Otherwise each bean gets its own
    stream spawned from SEED.
    """
    if config.SHARED_RNG:
        shared = np.random.default_rng(config.SEED)
        return [
            create_bean(config.SLOT_COUNT, config.MODE, shared)
            for _ in range(config.BEAN_COUNT)
        ]
    seed_seq = np.random.SeedSequence(config.SEED)
    return [
        create_bean(config.SLOT_COUNT, config.MODE, np.random.default_rng(child))
        for child in seed_seq.spawn(config.BEAN_COUNT)
    ]


@dataclass(frozen=True)
class SlotStatistics:
    total_beans: int
    observed_mean: float
    expected_mean: float
    observed_variance: float
    expected_variance: float
    expected_counts: NDArrayF64
    chi_square: float
    p_value: float


def analyze_slot_distribution(slot_counts: list[int]) -> SlotStatistics:
    """
    Compare slot counts against the fair binomial a luck board should give.

    The chi-square statistic and p-value are NaN when there is nothing to
    test: no beans, or a single slot.
    """
    observed = np.asarray(slot_counts, dtype=np.float64)
    num_slots = observed.size
    if num_slots == 0:
        raise SimulationError("Cannot analyze a board without slots.")

    num_pegs = num_slots - 1
    total = float(observed.sum())
    indices = np.arange(num_slots)
    pmf = stats.binom.pmf(indices, num_pegs, FAIR_BOUNCE_PROBABILITY)
    expected_counts = pmf * total
    expected_mean = num_pegs * FAIR_BOUNCE_PROBABILITY
    expected_variance = (
        num_pegs * FAIR_BOUNCE_PROBABILITY * (1 - FAIR_BOUNCE_PROBABILITY)
    )

    if total <= 0:
        return SlotStatistics(
            total_beans=0,
            observed_mean=0.0,
            expected_mean=expected_mean,
            observed_variance=0.0,
            expected_variance=expected_variance,
            expected_counts=expected_counts,
            chi_square=math.nan,
            p_value=math.nan,
        )

    observed_mean = float(np.dot(indices, observed) / total)
    observed_variance = float(
        np.dot((indices - observed_mean) ** 2, observed) / total
    )

    chi_square, p_value = math.nan, math.nan
    if num_slots > 1:
        # rescale so both sides sum to the same total despite pmf rounding
        expected_for_test = expected_counts * (total / expected_counts.sum())
        result = stats.chisquare(observed, expected_for_test)
        chi_square, p_value = float(result.statistic), float(result.pvalue)

    return SlotStatistics(
        total_beans=int(total),
        observed_mean=observed_mean,
        expected_mean=expected_mean,
        observed_variance=observed_variance,
        expected_variance=expected_variance,
        expected_counts=expected_counts,
        chi_square=chi_square,
        p_value=p_value,
    )


@dataclass
class ExperimentResult:
    slot_counts: list[list[int]] = field(default_factory=list)
    averages: list[float] = field(default_factory=list)
    steps: list[int] = field(default_factory=list)

    @property
    def final_slot_counts(self) -> list[int]:
        return self.slot_counts[-1] if self.slot_counts else []


class BeanCounterRunner:
    def __init__(self, config: BeanCounterConfig | None = None) -> None:
        try:
            self.config = config or BeanCounterConfig()
        except ConfigError as e:
            raise ConfigError(
                f"Configuration initialization failed: {e}"
            ) from e

        self.machine: BeanCounterLogic = create_machine(
            self.config.SLOT_COUNT, self.config.X_SPACING
        )
        self.beans: list[Bean] = create_beans(self.config)
        self.result = ExperimentResult()

    def _show(self) -> None:
        if self.config.DEBUG:
            print(self.machine)
            print()

    def _drain(self) -> int:
        steps = 0
        while self.machine.advance_step():
            steps += 1
            self._show()
        return steps

    def _apply_half_filter(self) -> None:
        half_filter = self.config.HALF_FILTER
        if half_filter == "lower":
            self.machine.lower_half()
        elif half_filter == "upper":
            self.machine.upper_half()

    def _record_pass(self, steps: int) -> None:
        self.result.slot_counts.append(self.machine.slot_counts)
        self.result.averages.append(
            self.machine.get_average_slot_bean_count()
        )
        self.result.steps.append(steps)

    def run(self) -> ExperimentResult:
        cfg = self.config
        logger.info(
            "Running bean counter (mode: %s, slots: %d, beans: %d, seed: %s)",
            cfg.MODE,
            cfg.SLOT_COUNT,
            cfg.BEAN_COUNT,
            cfg.SEED,
        )
        self.result = ExperimentResult()
        self.machine.reset(self.beans)
        self._show()
        steps = self._drain()
        self._apply_half_filter()
        self._record_pass(steps)

        for repeat_index in range(1, cfg.REPEATS + 1):
            logger.info("Repeat %d/%d", repeat_index, cfg.REPEATS)
            self.machine.repeat()
            self._show()
            steps = self._drain()
            self._apply_half_filter()
            self._record_pass(steps)

        return self.result

    def display_results(self) -> None:
        print("Slot bean counts:")
        print(self.machine.get_slot_string())
        summary = analyze_slot_distribution(self.machine.slot_counts)
        self._display_statistics_table(summary)

    def _display_statistics_table(self, summary: SlotStatistics) -> None:
        max_table_width = 60
        title = "Slot Distribution Summary"
        header_separator = "=" * max_table_width
        print(
            f"\n{header_separator}\n{title:^{max_table_width}}\n{header_separator}"
        )
        if summary.total_beans == 0:
            print("No beans in slots; nothing to summarize.")
            print(header_separator + "\n")
            return

        col_width = 12
        header_line = (
            f"{'Slot':<{col_width}}{'Observed':>{col_width}}"
            f"{'Expected':>{col_width}}"
        )
        table_separator = "-" * len(header_line)
        print(f"\n{header_line}\n{table_separator}")
        for i, expected in enumerate(summary.expected_counts):
            observed = self.machine.get_slot_bean_count(i)
            print(
                f"{i:<{col_width}d}{observed:>{col_width}d}"
                f"{expected:>{col_width}.2f}"
            )
        print(table_separator)
        print(
            f"Mean slot:     {summary.observed_mean:.4f} "
            f"(fair board: {summary.expected_mean:.4f})"
        )
        print(
            f"Variance:      {summary.observed_variance:.4f} "
            f"(fair board: {summary.expected_variance:.4f})"
        )
        if not math.isnan(summary.chi_square):
            print(
                f"Chi-square:    {summary.chi_square:.4f} "
                f"(p = {summary.p_value:.4g})"
            )
        print(header_separator + "\n")


def setup_logging(log_format: str, level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=log_format, force=True)


def _run_task(
    task_name: str,
    task_func: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> int:
    start_time = time.monotonic()
    exit_code = EXIT_UNEXPECTED_ERROR
    try:
        task_func(*args, **kwargs)
        exit_code = EXIT_OK
    except ConfigError as e:
        print(
            f"\nCRITICAL CONFIGURATION ERROR: {e}\nAborting {task_name}.",
            file=sys.stderr,
        )
        exit_code = EXIT_CONFIG_ERROR
    except SimulationError as e:
        print(
            f"ERROR during {task_name}: {type(e).__name__}: {e}",
            file=sys.stderr,
        )
        exit_code = EXIT_SIMULATION_ERROR
    except Exception as e:
        print(
            f"UNEXPECTED ERROR during {task_name}: {type(e).__name__}: {e}",
            file=sys.stderr,
        )
        traceback.print_exc(file=sys.stderr)
    finally:
        elapsed_time = time.monotonic() - start_time
        status = "OK" if exit_code == EXIT_OK else "FAILED"
        logger.info("%s %s (Duration: %.2fs)", task_name, status, elapsed_time)
    return exit_code


def main_simulation_runner(config: BeanCounterConfig) -> int:
    setup_logging(config.LOG_FORMAT)

    def task() -> None:
        runner = BeanCounterRunner(config)
        runner.run()
        runner.display_results()

    return _run_task("Bean counter experiment", task)


def parse_experiment_args(args: list[str]) -> BeanCounterConfig | None:
    """
    Parse `slot_count bean_count <luck | skill> [debug]`.

    Returns None when the arguments do not describe a valid run.
    """
    if len(args) not in (3, 4):
        return None
    try:
        slot_count = int(args[0])
        bean_count = int(args[1])
    except ValueError:
        return None
    if slot_count <= 0 or bean_count < 0:
        return None
    if args[2] not in ("luck", "skill"):
        return None
    debug = len(args) == 4 and args[3] == "debug"
    try:
        return BeanCounterConfig(
            SLOT_COUNT=slot_count,
            BEAN_COUNT=bean_count,
            MODE=args[2],  # type: ignore[arg-type]
            DEBUG=debug,
        )
    except ConfigError:
        return None


def run_tests(
    verbosity_level: int = 2, harness: HarnessConfig | None = None
) -> int:
    import test_bean_counter

    print("\n--- Running Unit Tests ---")
    suite = test_bean_counter.build_suite(harness or HarnessConfig())
    runner = unittest.TextTestRunner(
        verbosity=verbosity_level, failfast=False, buffer=True
    )
    result = runner.run(suite)

    print("\n--- Unit Tests Complete ---")
    print(f"Total Tests Run: {result.testsRun}")
    print(f"Failures: {len(result.failures)}")
    print(f"Errors: {len(result.errors)}")
    print(f"Skipped: {len(result.skipped)}")

    return EXIT_OK if result.wasSuccessful() else EXIT_TESTS_FAILED


def display_help() -> None:
    try:
        script_name = Path(__file__).name
    except NameError:
        script_name = "bean_counter.py"

    help_text = f"""
Usage: python {script_name} slot_count bean_count <luck | skill> [debug]
       python {script_name} --test [-v N] [--single | --exhaustive]
       python {script_name} --help

Bean Counter: a text-mode Galton box (quincunx) simulation.

Examples:
  python {script_name} 10 400 luck
  python {script_name} 20 1000 skill debug

Arguments:
  slot_count    : Number of slots at the bottom (positive integer). The board
                  has as many rows of pegs as there are slots.
  bean_count    : Number of beans to drop (non-negative integer).
  luck | skill  : luck beans bounce left or right with equal probability;
                  skill beans aim for a fixed slot every time.
  debug         : Print the board after every step.

Options:
  --test [-v N] : Run the unit test suite. Verbosity N can be 0, 1 or 2
                  (default 2). By default every slot/bean/mode combination
                  of the harness is exercised (--exhaustive); --single runs
                  only the 5-slot, 3-bean luck configuration.
  --help, -h    : Display this help message and exit.
"""
    print(help_text)


def _parse_verbosity(command_args: list[str]) -> int:
    test_verbosity = 2
    if "-v" not in command_args:
        return test_verbosity
    v_index = command_args.index("-v")
    if v_index + 1 >= len(command_args):
        logger.warning(
            "Missing verbosity level after -v argument. Using default (2)."
        )
        return test_verbosity
    level_str = command_args[v_index + 1]
    if not level_str.isdigit() or int(level_str) not in (0, 1, 2):
        logger.warning(
            "Invalid verbosity level specified after -v. Must be 0, 1, or 2. Using default (2)."
        )
        return test_verbosity
    return int(level_str)


def _parse_harness(command_args: list[str]) -> HarnessConfig | None:
    single = "--single" in command_args
    exhaustive = "--exhaustive" in command_args
    if single and exhaustive:
        return None
    return HarnessConfig(TEST_MODE="single" if single else "exhaustive")


def main(command_args: list[str]) -> int:
    if "--test" in command_args:
        harness = _parse_harness(command_args)
        if harness is None:
            print(
                "Error: --single and --exhaustive cannot be combined.",
                file=sys.stderr,
            )
            display_help()
            return EXIT_BAD_ARGUMENTS
        return run_tests(
            verbosity_level=_parse_verbosity(command_args), harness=harness
        )

    if "--help" in command_args or "-h" in command_args:
        display_help()
        return EXIT_OK

    config = parse_experiment_args(command_args)
    if config is None:
        display_help()
        return EXIT_BAD_ARGUMENTS
    return main_simulation_runner(config)


def cli() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
