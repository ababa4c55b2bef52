"""Math question generation: six archetypes with a guaranteed-valid fallback."""
import logging
import math
import random
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone

from mathblitz.models.question import Difficulty, Question

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 50
MAX_CHAIN_ATTEMPTS = 20
MAX_MAGNITUDE = 1_000_000
POWER_SQRT_THRESHOLD = 10_000

# Recent "problem-answer" keys; past the soft cap every candidate is accepted,
# past the hard cap the ring is trimmed back to the soft cap.
HISTORY_SOFT_CAP = 100
HISTORY_HARD_CAP = 150


class QuestionGenerationError(ValueError):
    """A candidate question was rejected (bad operands or invalid answer)."""


@dataclass(frozen=True)
class OperandRange:
    min: int
    max: int
    operators: tuple[str, ...]
    max_terms: int


_RANGES = {
    Difficulty.EASY: OperandRange(1, 50, ("+", "-"), 2),
    Difficulty.MEDIUM: OperandRange(1, 200, ("+", "-", "*"), 3),
    Difficulty.HARD: OperandRange(1, 1000, ("+", "-", "*", "/"), 4),
}

_ALGEBRA_MAX = {Difficulty.EASY: 20, Difficulty.MEDIUM: 50, Difficulty.HARD: 100}
_FRACTION_MAX_DENOM = {Difficulty.EASY: 10, Difficulty.MEDIUM: 20, Difficulty.HARD: 50}
_POWER_MAX_BASE = {Difficulty.EASY: 10, Difficulty.MEDIUM: 15, Difficulty.HARD: 20}
_POWER_MAX_EXP = {Difficulty.EASY: 3, Difficulty.MEDIUM: 4, Difficulty.HARD: 5}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def is_valid_answer(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and abs(value) < MAX_MAGNITUDE


def evaluate_chain(operands: list[int], operators: list[str]) -> float:
    """Evaluate `a op b op c ...` with * and / binding tighter than + and -."""
    terms = [float(operands[0])]
    signs: list[str] = []
    for op, value in zip(operators, operands[1:]):
        if op == "*":
            terms[-1] *= value
        elif op == "/":
            if value == 0:
                raise QuestionGenerationError("division by zero")
            terms[-1] /= value
        else:
            signs.append(op)
            terms.append(float(value))

    total = terms[0]
    for op, term in zip(signs, terms[1:]):
        total = total + term if op == "+" else total - term
    return total


def format_chain(operands: list[int], operators: list[str]) -> str:
    parts = [str(operands[0])]
    for op, value in zip(operators, operands[1:]):
        parts.append(f"{op} {value}")
    return " ".join(parts)


def _random_divisor(rng: random.Random, n: int) -> int:
    if n <= 1:
        return 1
    divisors = []
    for i in range(1, math.isqrt(n) + 1):
        if n % i == 0:
            divisors.append(i)
            if i != n // i:
                divisors.append(n // i)
    return rng.choice(divisors)


def _random_chain(
    rng: random.Random, config: OperandRange, num_terms: int
) -> tuple[list[int], list[str]]:
    operands = [rng.randint(config.min, config.max)]
    operators: list[str] = []
    # Value of the trailing multiplicative run, which is what a "/" divides
    term = float(operands[0])

    for _ in range(num_terms - 1):
        op = rng.choice(config.operators)
        value = rng.randint(config.min, config.max)
        if op == "/" and term % value != 0 and rng.random() > 0.3:
            value = _random_divisor(rng, int(abs(term)))

        operands.append(value)
        operators.append(op)
        if op == "*":
            term *= value
        elif op == "/":
            term /= value
        else:
            term = float(value)

    return operands, operators


# ---------------------------------------------------------------------------
# Archetypes: each returns (problem text, numeric answer)
# ---------------------------------------------------------------------------

def arithmetic(rng: random.Random, difficulty: Difficulty) -> tuple[str, float]:
    config = _RANGES[difficulty]
    num_terms = rng.randint(2, config.max_terms)

    for _ in range(MAX_CHAIN_ATTEMPTS):
        operands, operators = _random_chain(rng, config, num_terms)
        result = evaluate_chain(operands, operators)
        if is_valid_answer(result):
            return f"Calculate: {format_chain(operands, operators)}", round(result, 2)

    raise QuestionGenerationError("no valid arithmetic chain")


def algebra(rng: random.Random, difficulty: Difficulty) -> tuple[str, float]:
    upper = _ALGEBRA_MAX[difficulty]
    a = rng.randint(1, upper)
    b = rng.randint(1, upper)
    x = rng.randint(1, upper)

    templates = [
        f"If {a}x + {b} = {a * x + b}, find x",
        f"Solve for x: {a}x - {b} = {a * x - b}",
        f"What is x when {a}(x + {b}) = {a * (x + b)}?",
        f"Find x: {a}x = {a * x}",
    ]
    return rng.choice(templates), x


def fractions(rng: random.Random, difficulty: Difficulty) -> tuple[str, float]:
    max_denom = _FRACTION_MAX_DENOM[difficulty]
    num1 = rng.randint(1, max_denom - 1)
    den1 = rng.randint(num1 + 1, max_denom)
    num2 = rng.randint(1, max_denom - 1)
    den2 = rng.randint(num2 + 1, max_denom)
    op = rng.choice(("+", "-"))

    if op == "+":
        numerator = num1 * den2 + num2 * den1
    else:
        numerator = num1 * den2 - num2 * den1
    result = round(numerator / (den1 * den2), 3)

    return f"Calculate: {num1}/{den1} {op} {num2}/{den2} (as decimal)", result


def percentages(rng: random.Random, difficulty: Difficulty) -> tuple[str, float]:
    base = rng.randint(50, 1000)
    percentage = rng.randint(5, 95)

    if rng.random() < 0.5:
        return f"What is {percentage}% of {base}?", round(base * percentage / 100, 2)

    # The whole is rounded for display, so the answer is taken from the shown whole
    whole = round(base * 100 / percentage)
    return f"{base} is what percent of {whole}?", round(base * 100 / whole, 2)


def powers(rng: random.Random, difficulty: Difficulty) -> tuple[str, float]:
    base = rng.randint(2, _POWER_MAX_BASE[difficulty])
    exponent = rng.randint(2, _POWER_MAX_EXP[difficulty])
    result = base ** exponent

    if result > POWER_SQRT_THRESHOLD:
        root = rng.randint(2, 10)
        return f"What is √{root * root}?", root

    return f"Calculate: {base}^{exponent}", result


_MIXED_TEMPLATES = (
    ("({a} + {b}) * {c}", lambda a, b, c: (a + b) * c),
    ("{a} * ({b} + {c})", lambda a, b, c: a * (b + c)),
    ("({a} + {b}) / {c}", lambda a, b, c: (a + b) / c),
    ("{a} + {b} * {c}", lambda a, b, c: a + b * c),
    ("{a} * {b} - {c}", lambda a, b, c: a * b - c),
    ("({a} - {b}) + {c} * 2", lambda a, b, c: (a - b) + c * 2),
)


def mixed(rng: random.Random, difficulty: Difficulty) -> tuple[str, float]:
    config = _RANGES[difficulty]
    upper = min(config.max, 50)
    a = rng.randint(config.min, upper)
    b = rng.randint(config.min, upper)
    c = rng.randint(config.min, upper)

    template, formula = rng.choice(_MIXED_TEMPLATES)
    expression = template.format(a=a, b=b, c=c)
    return f"Calculate: {expression}", round(formula(a, b, c), 2)


def fallback(rng: random.Random, difficulty: Difficulty) -> tuple[str, float]:
    """Two-term +, - or * over integers; always valid."""
    config = _RANGES[difficulty]
    upper = min(config.max, 999)
    a = rng.randint(config.min, upper)
    b = rng.randint(config.min, upper)
    op = rng.choice(("+", "-", "*"))

    if op == "+":
        result = a + b
    elif op == "-":
        result = a - b
    else:
        result = a * b
    return f"Calculate: {a} {op} {b}", result


ARCHETYPES = {
    "arithmetic": arithmetic,
    "algebra": algebra,
    "fractions": fractions,
    "percentages": percentages,
    "powers": powers,
    "mixed": mixed,
}

ELIGIBLE_ARCHETYPES = {
    Difficulty.EASY: ("arithmetic", "algebra"),
    Difficulty.MEDIUM: ("arithmetic", "algebra", "fractions", "percentages"),
    Difficulty.HARD: tuple(ARCHETYPES),
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class QuestionGenerator:
    """
    Produces Questions for a difficulty tier, avoiding recent repeats.
    Invalid candidates are retried up to MAX_ATTEMPTS times before the
    two-term fallback is used, so generate() never fails.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()
        self._history: OrderedDict[str, None] = OrderedDict()
        self._counter = 0

    @property
    def history_size(self) -> int:
        return len(self._history)

    def recent_keys(self) -> list[str]:
        return list(self._history)

    def generate(self, difficulty: Difficulty = Difficulty.MEDIUM) -> Question:
        difficulty = Difficulty(difficulty)
        for attempt in range(1, MAX_ATTEMPTS + 1):
            archetype = self._rng.choice(ELIGIBLE_ARCHETYPES[difficulty])
            try:
                problem, answer = ARCHETYPES[archetype](self._rng, difficulty)
                if not is_valid_answer(answer):
                    raise QuestionGenerationError(f"invalid answer {answer!r}")
            except QuestionGenerationError as exc:
                logger.debug("Attempt %d (%s) rejected: %s", attempt, archetype, exc)
                continue

            if self._remember(f"{problem}-{answer}"):
                return self._build(problem, answer, difficulty)

        logger.warning(
            "Question generation exhausted %d attempts, using fallback", MAX_ATTEMPTS
        )
        problem, answer = fallback(self._rng, difficulty)
        self._remember(f"{problem}-{answer}")
        return self._build(problem, answer, difficulty)

    def generate_set(
        self, count: int, difficulty: Difficulty = Difficulty.MEDIUM
    ) -> list[Question]:
        return [self.generate(difficulty) for _ in range(count)]

    def reset_history(self) -> None:
        self._history.clear()
        self._counter = 0

    def _remember(self, key: str) -> bool:
        if key in self._history and len(self._history) <= HISTORY_SOFT_CAP:
            return False

        self._history[key] = None
        self._history.move_to_end(key)
        if len(self._history) > HISTORY_HARD_CAP:
            while len(self._history) > HISTORY_SOFT_CAP:
                self._history.popitem(last=False)
        return True

    def _build(self, problem: str, answer: float, difficulty: Difficulty) -> Question:
        self._counter += 1
        return Question(
            id=f"{uuid.uuid4()}-{self._counter}",
            problem=problem,
            answer=answer,
            difficulty=difficulty,
            created_at=datetime.now(timezone.utc),
        )
