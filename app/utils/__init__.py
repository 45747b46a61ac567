"""
Utility modules for the rewards engine.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    rewards_error_response,
    bad_request,
    unauthorized,
    not_found,
    internal_error
)
from .exceptions import (
    RewardsError,
    NotFoundError,
    RuleNotFoundError,
    AgentNotFoundError,
    UnknownMetricError,
    UnsupportedWindowError,
    UnsupportedFilterError,
    InvalidRuleShapeError,
    InsufficientPopulationError,
    MetricResolutionError,
    ConfigurationError
)
from .locks import subject_locks, SubjectLockRegistry
