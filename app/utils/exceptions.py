"""
Custom exceptions for the rewards eligibility engine.

These exceptions provide more specific error handling than generic Exception,
allowing for better error messages and appropriate HTTP status codes.
"""


class RewardsError(Exception):
    """Base exception for all rewards engine errors."""

    def __init__(self, message: str, code: str = "REWARDS_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(RewardsError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper()}_NOT_FOUND")


class RuleNotFoundError(NotFoundError):
    """Eligibility rule not found."""

    def __init__(self, identifier=None):
        super().__init__("Rule", identifier)


class AgentNotFoundError(NotFoundError):
    """Agent not found."""

    def __init__(self, identifier=None):
        super().__init__("Agent", identifier)


class UnknownMetricError(RewardsError):
    """Metric name is not in the registry."""

    def __init__(self, metric: str):
        self.metric = metric
        super().__init__(f"Unknown metric '{metric}'", "UNKNOWN_METRIC")


class UnsupportedWindowError(RewardsError):
    """Time window is not one of the supported windows."""

    def __init__(self, window: str):
        self.window = window
        super().__init__(f"Unsupported time window '{window}'", "UNSUPPORTED_WINDOW")


class UnsupportedFilterError(RewardsError):
    """Filter key is outside the supported filter kinds."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Unsupported filter '{key}'", "UNSUPPORTED_FILTER")


class InvalidRuleShapeError(RewardsError):
    """Operator and threshold values do not agree."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message, "INVALID_RULE_SHAPE")


class InsufficientPopulationError(RewardsError):
    """Rank-based operator evaluated without a population snapshot."""

    def __init__(self, operator: str):
        self.operator = operator
        super().__init__(
            f"Operator '{operator}' needs a ranked population to evaluate",
            "INSUFFICIENT_POPULATION"
        )


class MetricResolutionError(RewardsError):
    """Upstream metric data could not be read."""

    def __init__(self, message: str, subject_id=None, original_error: Exception = None):
        self.subject_id = subject_id
        self.original_error = original_error
        super().__init__(message, "METRIC_RESOLUTION_FAILED")


class ConfigurationError(RewardsError):
    """Application configuration error."""

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")
