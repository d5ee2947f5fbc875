"""
Domain models — Pydantic types for the maintenance orchestrator.

All models are re-exported here for convenient access:

    from src.core.models import Configuration, StepOutcome, Action, Receipt
"""

from src.core.models.action import Action, Receipt
from src.core.models.config import PROFILE_NAMES, Configuration, Settings
from src.core.models.step import StepDefinition, StepOutcome, StepStatus

__all__ = [
    # action.py
    "Action",
    # config.py
    "Configuration",
    "PROFILE_NAMES",
    "Receipt",
    "Settings",
    # step.py
    "StepDefinition",
    "StepOutcome",
    "StepStatus",
]
