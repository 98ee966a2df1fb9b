"""Parameter validation for operation invocations.

Validation runs over the raw argument text accumulated from the stream:

1. the text is parsed as JSON (a failure is a single structural error),
2. operations with a registered check are validated against their JSON schema
   and then by the check itself,
3. a normalized copy of the arguments is returned even when invalid so the
   model (or caller) gets as much information as possible.

Operations without a registered check pass through as valid.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from json import JSONDecodeError
from typing import Any, Callable, Iterable, Mapping

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from .registry import OperationRegistry, default_registry
from .video_validation import validate_generate_video

__all__ = [
    "ValidationOutcome",
    "ParameterCheck",
    "ParameterValidator",
    "parse_arguments",
    "validate_generate_image",
    "DEFAULT_CHECKS",
]

LOGGER = logging.getLogger(__name__)

MAX_SCHEMA_ERRORS = 20
_MIN_IMAGE_PROMPT_CHARS = 5


# -----------------------------------------------------------------------------
# Outcome
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ValidationOutcome:
    """Result of validating one invocation's arguments.

    Attributes:
        valid: Whether the arguments may be dispatched.
        errors: Blocking defects, human-readable.
        warnings: Non-blocking observations.
        normalized_arguments: Trimmed/defaulted arguments (``None`` when unparseable).
        parse_error: True when the raw text was not a JSON object.
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    normalized_arguments: dict[str, Any] | None = None
    parse_error: bool = False

    @classmethod
    def passed(cls, arguments: Mapping[str, Any] | None = None) -> ValidationOutcome:
        return cls(valid=True, normalized_arguments=dict(arguments) if arguments is not None else None)

    @classmethod
    def from_lists(
        cls,
        errors: list[str],
        warnings: list[str],
        normalized: Mapping[str, Any] | None,
    ) -> ValidationOutcome:
        return cls(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            normalized_arguments=dict(normalized) if normalized is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
        if self.normalized_arguments is not None:
            payload["normalizedArguments"] = dict(self.normalized_arguments)
        return payload


ParameterCheck = Callable[[Mapping[str, Any]], ValidationOutcome]


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


def parse_arguments(raw_arguments: str | None) -> dict[str, Any]:
    """Decode accumulated argument text into a mapping.

    Blank text decodes to an empty mapping since backends commonly stream no
    argument fragments for parameterless operations.

    Raises:
        ValueError: When the text is not a JSON object.
    """

    text = (raw_arguments or "").strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except JSONDecodeError as exc:
        raise ValueError(_format_json_decode_message(exc)) from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"Arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed


def _format_json_decode_message(exc: JSONDecodeError) -> str:
    return f"{exc.msg} (line {exc.lineno}, column {exc.colno})"


# -----------------------------------------------------------------------------
# Operation checks
# -----------------------------------------------------------------------------


def validate_generate_image(arguments: Mapping[str, Any]) -> ValidationOutcome:
    """Checks for ``generate_image_asset``."""

    errors: list[str] = []
    warnings: list[str] = []
    assets = arguments.get("assets")
    if not isinstance(assets, list):
        errors.append("Missing required parameter 'assets' (array)")
        return ValidationOutcome.from_lists(errors, warnings, arguments)
    if not assets:
        errors.append("'assets' must not be empty")
        return ValidationOutcome.from_lists(errors, warnings, arguments)

    normalized_assets: list[Any] = []
    for index, asset in enumerate(assets):
        if not isinstance(asset, Mapping):
            errors.append(f"assets[{index}] must be an object")
            normalized_assets.append(asset)
            continue
        prompt = asset.get("prompt")
        if not isinstance(prompt, str) or not prompt:
            errors.append(f"assets[{index}] is missing required parameter 'prompt'")
        elif len(prompt.strip()) < _MIN_IMAGE_PROMPT_CHARS:
            errors.append(f"assets[{index}].prompt must contain at least {_MIN_IMAGE_PROMPT_CHARS} characters")
        if "tags" in asset and asset["tags"] and not isinstance(asset["tags"], list):
            errors.append(f"assets[{index}].tags must be an array")
        if "sourceAssetIds" in asset and asset["sourceAssetIds"] and not isinstance(asset["sourceAssetIds"], list):
            errors.append(f"assets[{index}].sourceAssetIds must be an array")

        item = dict(asset)
        if isinstance(prompt, str):
            item["prompt"] = prompt.strip()
        if isinstance(item.get("name"), str):
            item["name"] = item["name"].strip()
        item.setdefault("numImages", 1)
        normalized_assets.append(item)

    normalized = dict(arguments)
    normalized["assets"] = normalized_assets
    return ValidationOutcome.from_lists(errors, warnings, normalized)


DEFAULT_CHECKS: Mapping[str, ParameterCheck] = {
    "generate_image_asset": validate_generate_image,
    "generate_video_asset": validate_generate_video,
}


# -----------------------------------------------------------------------------
# Validator
# -----------------------------------------------------------------------------


class ParameterValidator:
    """Table-driven validator keyed by operation name.

    Example:
        validator = ParameterValidator()
        outcome = validator.validate("generate_image_asset", '{"assets": []}')
        assert not outcome.valid
    """

    def __init__(
        self,
        registry: OperationRegistry | None = None,
        checks: Mapping[str, ParameterCheck] | None = None,
    ) -> None:
        self._registry = registry or default_registry()
        self._checks: dict[str, ParameterCheck] = dict(DEFAULT_CHECKS if checks is None else checks)
        self._schema_validators: dict[str, Draft202012Validator | None] = {}

    @property
    def checked_operations(self) -> Iterable[str]:
        return tuple(self._checks)

    def validate(self, name: str, raw_arguments: str | None) -> ValidationOutcome:
        """Validate the raw argument text for operation ``name``."""

        try:
            parsed = parse_arguments(raw_arguments)
        except ValueError as exc:
            LOGGER.debug("Arguments for %s failed to parse: %s", name, exc)
            return ValidationOutcome(
                valid=False,
                errors=[f"Unable to parse arguments: {exc}"],
                parse_error=True,
            )

        check = self._checks.get(name)
        if check is None:
            return ValidationOutcome.passed(parsed)

        schema_errors = self._schema_errors(name, parsed)
        try:
            outcome = check(parsed)
        except Exception as exc:  # pragma: no cover - a faulty check must not crash the loop
            LOGGER.exception("Parameter check for %s raised", name)
            outcome = ValidationOutcome(
                valid=False,
                errors=[f"Parameter check failed: {exc}"],
                normalized_arguments=dict(parsed),
            )

        if schema_errors:
            merged = schema_errors + [error for error in outcome.errors if error not in schema_errors]
            outcome = ValidationOutcome(
                valid=False,
                errors=merged,
                warnings=outcome.warnings,
                normalized_arguments=outcome.normalized_arguments,
            )
        if not outcome.valid:
            LOGGER.info("Validation failed for %s: %s", name, "; ".join(outcome.errors))
        elif outcome.warnings:
            LOGGER.debug("Validation warnings for %s: %s", name, "; ".join(outcome.warnings))
        return outcome

    def _schema_errors(self, name: str, parsed: Mapping[str, Any]) -> list[str]:
        validator = self._schema_validator(name)
        if validator is None:
            return []
        errors: list[str] = []
        for issue in validator.iter_errors(parsed):
            path = _format_schema_path(issue.absolute_path)
            message = issue.message
            if path:
                message = f"{path}: {message}"
            errors.append(message)
            if len(errors) >= MAX_SCHEMA_ERRORS:
                errors.append("Too many validation errors; stopping early.")
                break
        return errors

    def _schema_validator(self, name: str) -> Draft202012Validator | None:
        if name in self._schema_validators:
            return self._schema_validators[name]
        descriptor = self._registry.lookup(name)
        validator: Draft202012Validator | None = None
        if descriptor is not None and descriptor.parameters:
            try:
                Draft202012Validator.check_schema(descriptor.parameters)
                validator = Draft202012Validator(descriptor.parameters)
            except SchemaError as exc:
                LOGGER.warning("Invalid parameter schema for %s: %s", name, exc.message)
        self._schema_validators[name] = validator
        return validator


def _format_schema_path(path: Iterable[Any]) -> str:
    parts: list[str] = []
    for item in path:
        if isinstance(item, int):
            parts.append(f"[{item}]")
        elif parts:
            parts.append(f".{item}")
        else:
            parts.append(str(item))
    return "".join(parts)
