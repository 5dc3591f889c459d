"""Cache/loading coordinator: operation registry, tiered eviction, statistics, supervision.

Exports:
 - ``CacheManager``: the coordinator instance handed to UI components
 - Operation registry and bounded action log
 - Severity-tiered eviction engine (``light`` < ``medium`` < ``full``)
 - Statistics aggregator and the polling ``CacheMonitor``
 - ``MemoryPressureMonitor`` for memory and long-task triggered light clears
 - ``LoadingSupervisor`` for loading signals with a soft timeout
 - Collaborator protocols with in-memory and file-backed implementations
 - Configuration and structured errors
"""

from .collaborators import (
    CallbackReloader,
    InMemoryQueryCache,
    InMemoryStorage,
    JsonFileStorage,
    KeyValueStore,
    NavigationTiming,
    ProcessReloader,
    QueryCache,
    Reloader,
    StaticNavigationTiming,
)
from .config import (
    CacheManagerConfig,
    get_development_config,
    get_production_config,
    get_testing_config,
    load_config,
)
from .errors import (
    CacheClearError,
    CacheManagerError,
    ConfigurationError,
    ConfirmationRequiredError,
    ErrorCategory,
    ValidationError,
    exception_is_transient,
)
from .eviction import CacheEvictionEngine, ClearResult, SeverityLevel, StepResult
from .manager import CacheManager
from .monitor import CacheMonitor, MonitorStatus
from .operations import ActionLog, ActionLogEntry, Operation, OperationRegistry
from .pressure import MemoryPressureMonitor, system_memory_percent
from .stats import CacheStatistics, CategoryStats, StatisticsAggregator
from .supervisor import LoadingState, LoadingSupervisor

__all__ = [
    # Coordinator
    "CacheManager",
    # Registry
    "ActionLog",
    "ActionLogEntry",
    "Operation",
    "OperationRegistry",
    # Eviction
    "CacheEvictionEngine",
    "ClearResult",
    "SeverityLevel",
    "StepResult",
    # Statistics / monitoring
    "CacheMonitor",
    "CacheStatistics",
    "CategoryStats",
    "MemoryPressureMonitor",
    "MonitorStatus",
    "StatisticsAggregator",
    "system_memory_percent",
    # Supervision
    "LoadingState",
    "LoadingSupervisor",
    # Collaborators
    "CallbackReloader",
    "InMemoryQueryCache",
    "InMemoryStorage",
    "JsonFileStorage",
    "KeyValueStore",
    "NavigationTiming",
    "ProcessReloader",
    "QueryCache",
    "Reloader",
    "StaticNavigationTiming",
    # Configuration
    "CacheManagerConfig",
    "get_development_config",
    "get_production_config",
    "get_testing_config",
    "load_config",
    # Errors
    "CacheClearError",
    "CacheManagerError",
    "ConfigurationError",
    "ConfirmationRequiredError",
    "ErrorCategory",
    "ValidationError",
    "exception_is_transient",
]
