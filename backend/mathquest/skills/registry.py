"""Read-only skill registry — maps operation name to contract instance."""

from .addition import AdditionFactContract
from .subtraction import SubtractionFactContract
from .multiplication import MultiplicationFactContract
from .division import DivisionFactContract

SKILL_REGISTRY = {
    "addition": AdditionFactContract(),
    "subtraction": SubtractionFactContract(),
    "multiplication": MultiplicationFactContract(),
    "division": DivisionFactContract(),
}

OPERATIONS = tuple(SKILL_REGISTRY)
