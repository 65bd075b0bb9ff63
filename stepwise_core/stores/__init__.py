from stepwise_core.stores.modules import SqliteModuleStore
from stepwise_core.stores.questions import SqliteQuestionStore
from stepwise_core.stores.types import (
    GLOBAL_SCOPE,
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_READY,
    STATUS_UPLOADED,
    Module,
    ProcessingDecision,
    Question,
    Step,
)

__all__ = [
    "GLOBAL_SCOPE",
    "STATUS_FAILED",
    "STATUS_PROCESSING",
    "STATUS_READY",
    "STATUS_UPLOADED",
    "Module",
    "ProcessingDecision",
    "Question",
    "SqliteModuleStore",
    "SqliteQuestionStore",
    "Step",
]
