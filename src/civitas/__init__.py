"""
Civitas: rule engine for a civic-participation platform.

- IdentityRegistry: one identity per principal, sybil-resistant fingerprints
- QuizEngine: quiz authoring, grading, completion and attempt tracking
- RewardLedger: cooldown- and cap-gated token rewards with write-once claims
- Journal: hash-chained audit receipts for every attempted transition
"""

__version__ = "0.3.0"

from .clock import BlockClock
from .errors import CivitasError, Failure, Result
from .identity import IdentityRegistry
from .journal import Journal, get_default_journal
from .quiz import QuizEngine
from .rewards import RewardLedger
from .workflow import CivicWorkflow

__all__ = [
    "__version__",
    "BlockClock",
    "CivitasError",
    "Failure",
    "Result",
    "IdentityRegistry",
    "Journal",
    "get_default_journal",
    "QuizEngine",
    "RewardLedger",
    "CivicWorkflow",
]
