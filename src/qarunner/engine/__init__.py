"""Run-execution engine: queues, reflection, obstacle clearing and the automation contract."""

from .executor import AutomationExecutor, ExecutionOutcome
from .obstacles import (
    AIObstacleDetector,
    KeywordObstacleDetector,
    Obstacle,
    ObstacleConfidence,
    ObstacleDetector,
)
from .queues import ActionQueue, DoneQueue, QueueStats
from .reflector import (
    MAX_RETRIES,
    ReflectionResult,
    Reflector,
    Retry,
    Skip,
    Success,
    Wait,
    reflect,
)
from .selector_cache import CachedSelector, SelectorCache

__all__ = [
    "AIObstacleDetector",
    "ActionQueue",
    "AutomationExecutor",
    "CachedSelector",
    "DoneQueue",
    "ExecutionOutcome",
    "KeywordObstacleDetector",
    "MAX_RETRIES",
    "Obstacle",
    "ObstacleConfidence",
    "ObstacleDetector",
    "QueueStats",
    "ReflectionResult",
    "Reflector",
    "Retry",
    "SelectorCache",
    "Skip",
    "Success",
    "Wait",
    "reflect",
]
