"""Project descriptor resolution."""

from .models import BuildVariant, EnvironmentConfig
from .resolver import (
    describe,
    detect_variant,
    load_descriptor,
    normalize_descriptor,
    required_attributes,
    resolve_environment,
    validate_project,
)

__all__ = [
    "BuildVariant",
    "EnvironmentConfig",
    "describe",
    "detect_variant",
    "load_descriptor",
    "normalize_descriptor",
    "required_attributes",
    "resolve_environment",
    "validate_project",
]
