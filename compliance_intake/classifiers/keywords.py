"""
Keyword rule table mapping email body text to compliance task types.

Rules are evaluated in order against the lowercased body. Fallback rules
only apply when no regular rule fired, so "safety check" opens both task
types only when neither "smoke" nor "electric" was mentioned.
"""

from dataclasses import dataclass

from compliance_intake.classifiers.base import BaseClassifier
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import TaskSpec, TaskType

log = get_logger(__name__)

SMOKE_ALARM = TaskSpec(TaskType.SMOKE_ALARM, "smoke alarm", "1 year")
GAS_AND_ELECTRIC = TaskSpec(TaskType.GAS_ELECTRIC, "gas & electric", "2 years")
ELECTRIC = TaskSpec(TaskType.GAS_ELECTRIC, "electric", "2 years")


@dataclass(frozen=True)
class KeywordRule:
    """Open `tasks` when every `all_of` keyword and no `none_of` keyword is present."""

    name: str
    all_of: tuple[str, ...]
    tasks: tuple[TaskSpec, ...]
    none_of: tuple[str, ...] = ()
    fallback: bool = False

    def matches(self, text: str) -> bool:
        return all(k in text for k in self.all_of) and not any(k in text for k in self.none_of)


RULES: tuple[KeywordRule, ...] = (
    KeywordRule("smoke", all_of=("smoke",), tasks=(SMOKE_ALARM,)),
    KeywordRule("gas_electric", all_of=("electric", "gas"), tasks=(GAS_AND_ELECTRIC,)),
    KeywordRule("electric", all_of=("electric",), none_of=("gas",), tasks=(ELECTRIC,)),
    KeywordRule(
        "safety_check",
        all_of=("safety check",),
        tasks=(SMOKE_ALARM, GAS_AND_ELECTRIC),
        fallback=True,
    ),
)


class KeywordTaskClassifier(BaseClassifier):
    """Applies an ordered keyword rule table."""

    def __init__(self, rules: tuple[KeywordRule, ...] = RULES):
        self.rules = rules

    def classify(self, body: str) -> list[TaskSpec]:
        text = (body or "").lower()

        fired = [r for r in self.rules if not r.fallback and r.matches(text)]
        if not fired:
            fired = [r for r in self.rules if r.fallback and r.matches(text)]

        tasks: dict[TaskType, TaskSpec] = {}
        for rule in fired:
            for spec in rule.tasks:
                tasks.setdefault(spec.type, spec)

        log.debug("task_types_classified", rules=[r.name for r in fired], count=len(tasks))
        return list(tasks.values())


def classify_task_types(body: str) -> list[TaskSpec]:
    """Classify with the default rule table."""
    return KeywordTaskClassifier().classify(body)
