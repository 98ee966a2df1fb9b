"""Operation catalog, validation and pricing."""

from .cost import CostEstimator, CreditCosts, default_estimator
from .registry import OperationCategory, OperationDescriptor, OperationRegistry, default_registry
from .validation import ParameterValidator, ValidationOutcome, parse_arguments

__all__ = [
    "CostEstimator",
    "CreditCosts",
    "default_estimator",
    "OperationCategory",
    "OperationDescriptor",
    "OperationRegistry",
    "default_registry",
    "ParameterValidator",
    "ValidationOutcome",
    "parse_arguments",
]
