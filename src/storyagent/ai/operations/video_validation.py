"""Checks and normalization for video generation arguments.

Two generation modes are supported:

* ``reference-to-video`` (the default): a prompt plus up to seven reference
  images spread over ``elements`` and ``image_urls``. Supplying ``video_url``
  switches to continuation mode where images become optional.
* ``image-to-video``: a prompt plus a start frame and optional end frame.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping
from urllib.parse import urlparse

if TYPE_CHECKING:
    from .validation import ValidationOutcome

__all__ = [
    "MAX_REFERENCE_IMAGES",
    "VALID_DURATIONS",
    "VALID_ASPECT_RATIOS",
    "validate_generate_video",
    "validate_reference_to_video",
    "validate_image_to_video",
    "normalize_reference_to_video",
    "count_reference_images",
    "is_valid_image_url",
]

MAX_REFERENCE_IMAGES = 7
MIN_VIDEO_PROMPT_CHARS = 10
VALID_DURATIONS: tuple[str, ...] = ("5", "10")
VALID_ASPECT_RATIOS: tuple[str, ...] = ("16:9", "9:16", "1:1")
DEFAULT_DURATION = "5"
DEFAULT_ASPECT_RATIO = "16:9"

REFERENCE_TO_VIDEO = "reference-to-video"
IMAGE_TO_VIDEO = "image-to-video"


def _outcome(errors: list[str], warnings: list[str], normalized: Mapping[str, Any] | None) -> "ValidationOutcome":
    from .validation import ValidationOutcome

    return ValidationOutcome.from_lists(errors, warnings, normalized)


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------


def validate_generate_video(arguments: Mapping[str, Any]) -> "ValidationOutcome":
    """Route ``generate_video_asset`` arguments to the mode-specific checks."""

    mode = arguments.get("videoGenerationType") or REFERENCE_TO_VIDEO
    if mode == IMAGE_TO_VIDEO:
        config = arguments.get("imageToVideoConfig")
        if not isinstance(config, Mapping):
            return _outcome(
                ["imageToVideoConfig is required when videoGenerationType is 'image-to-video'"],
                [],
                arguments,
            )
        errors, warnings, normalized = validate_image_to_video(config)
        return _outcome(errors, warnings, {**arguments, "imageToVideoConfig": normalized})
    if mode == REFERENCE_TO_VIDEO:
        config = arguments.get("referenceToVideoConfig")
        if not isinstance(config, Mapping):
            return _outcome(
                ["referenceToVideoConfig is required when videoGenerationType is 'reference-to-video'"],
                [],
                arguments,
            )
        errors, warnings, _ = validate_reference_to_video(config)
        normalized = normalize_reference_to_video(config)
        merged = {**arguments, "videoGenerationType": REFERENCE_TO_VIDEO, "referenceToVideoConfig": normalized}
        if isinstance(arguments.get("prompt"), str):
            merged["prompt"] = arguments["prompt"].strip()
        return _outcome(errors, warnings, merged)
    return _outcome(
        [f"Unknown videoGenerationType: {mode}. Supported: {IMAGE_TO_VIDEO}, {REFERENCE_TO_VIDEO}"],
        [],
        arguments,
    )


# -----------------------------------------------------------------------------
# Reference-to-video
# -----------------------------------------------------------------------------


def validate_reference_to_video(config: Mapping[str, Any]) -> tuple[list[str], list[str], dict[str, Any]]:
    """Validate a reference-to-video configuration.

    Returns ``(errors, warnings, normalized)`` where ``normalized`` only trims
    the prompt and fills defaults; see :func:`normalize_reference_to_video` for
    the corrective pass.
    """

    errors: list[str] = []
    warnings: list[str] = []
    continuation = bool(config.get("video_url"))

    prompt = config.get("prompt")
    if not isinstance(prompt, str) or not prompt:
        errors.append("Missing required parameter 'prompt'")
    elif len(prompt.strip()) < MIN_VIDEO_PROMPT_CHARS:
        errors.append(
            f"prompt must contain at least {MIN_VIDEO_PROMPT_CHARS} characters, got {len(prompt.strip())}"
        )

    if continuation:
        if not isinstance(config.get("video_url"), str):
            errors.append("video_url must be a string in continuation mode")
        if isinstance(prompt, str) and "@Video1" not in prompt:
            warnings.append("Reference the source clip as @Video1 in the prompt")

    elements = config.get("elements") if isinstance(config.get("elements"), list) else []
    image_urls = config.get("image_urls") if isinstance(config.get("image_urls"), list) else []

    total = 0
    seen: set[str] = set()
    for index, element in enumerate(elements):
        if not isinstance(element, Mapping):
            errors.append(f"elements[{index}] must be an object")
            continue
        frontal = element.get("frontal_image_url")
        if frontal:
            total += 1
            seen.add(str(frontal))
        else:
            errors.append(f"elements[{index}] is missing frontal_image_url")
        references = element.get("reference_image_urls")
        if isinstance(references, list):
            total += len(references)
            seen.update(str(url) for url in references)
    total += len(image_urls)
    seen.update(str(url) for url in image_urls)

    if total > MAX_REFERENCE_IMAGES:
        errors.append(
            f"Total image count is {total}, above the limit of {MAX_REFERENCE_IMAGES}. "
            "Reduce the images in elements or image_urls."
        )
    elif total == 0:
        if continuation:
            warnings.append("No reference images supplied; generation will rely on the source clip only")
        else:
            errors.append("At least one image is required (through elements or image_urls)")

    if len(seen) < total:
        warnings.append(f"Duplicate image URLs detected ({total - len(seen)} duplicates); deduplicate to save quota")

    for index, element in enumerate(elements):
        if not isinstance(element, Mapping):
            continue
        references = element.get("reference_image_urls")
        if not references:
            errors.append(
                f"elements[{index}] has no reference_image_urls. Every element needs at least one reference "
                "image; put single images in image_urls instead."
            )
        frontal = element.get("frontal_image_url")
        if frontal and not is_valid_image_url(frontal):
            errors.append(f"elements[{index}].frontal_image_url is not a valid URL: {frontal}")
        if isinstance(references, list):
            for ref_index, url in enumerate(references):
                if not is_valid_image_url(url):
                    errors.append(f"elements[{index}].reference_image_urls[{ref_index}] is not a valid URL: {url}")

    for index, url in enumerate(image_urls):
        if not is_valid_image_url(url):
            errors.append(f"image_urls[{index}] is not a valid URL: {url}")

    duration = config.get("duration")
    if duration and duration not in VALID_DURATIONS:
        errors.append(f'duration must be the string "5" or "10", got "{duration}"')

    aspect_ratio = config.get("aspect_ratio")
    if aspect_ratio and aspect_ratio not in VALID_ASPECT_RATIOS:
        errors.append(f"aspect_ratio must be one of {', '.join(VALID_ASPECT_RATIOS)}, got \"{aspect_ratio}\"")

    normalized: dict[str, Any] = {
        "prompt": prompt.strip() if isinstance(prompt, str) else "",
        "duration": duration or DEFAULT_DURATION,
        "aspect_ratio": aspect_ratio or DEFAULT_ASPECT_RATIO,
    }
    if config.get("negative_prompt") is not None:
        normalized["negative_prompt"] = config["negative_prompt"]
    if continuation:
        normalized["video_url"] = config["video_url"]
    if "elements" in config:
        normalized["elements"] = config["elements"]
    if "image_urls" in config:
        normalized["image_urls"] = config["image_urls"]
    return errors, warnings, normalized


def normalize_reference_to_video(config: Mapping[str, Any]) -> dict[str, Any]:
    """Corrective normalization of a reference-to-video configuration.

    Elements without reference images are dissolved and their frontal image
    moves to ``image_urls``; image URLs are de-duplicated in order; defaults
    are filled in.
    """

    prompt = config.get("prompt")
    normalized: dict[str, Any] = {
        "prompt": prompt.strip() if isinstance(prompt, str) else "",
        "duration": config.get("duration") or DEFAULT_DURATION,
        "aspect_ratio": config.get("aspect_ratio") or DEFAULT_ASPECT_RATIO,
    }
    if config.get("negative_prompt") is not None:
        normalized["negative_prompt"] = config["negative_prompt"]
    if config.get("video_url"):
        normalized["video_url"] = config["video_url"]

    image_urls = list(config.get("image_urls") or [])
    kept: list[dict[str, Any]] = []
    for element in config.get("elements") or []:
        if not isinstance(element, Mapping):
            continue
        references = element.get("reference_image_urls")
        if references:
            kept.append(
                {
                    "frontal_image_url": element.get("frontal_image_url"),
                    "reference_image_urls": list(references),
                }
            )
        elif element.get("frontal_image_url"):
            image_urls.append(element["frontal_image_url"])
    if kept:
        normalized["elements"] = kept
    if image_urls:
        normalized["image_urls"] = list(dict.fromkeys(image_urls))
    return normalized


def count_reference_images(config: Mapping[str, Any]) -> int:
    count = 0
    for element in config.get("elements") or []:
        count += 1
        if isinstance(element, Mapping):
            count += len(element.get("reference_image_urls") or [])
    count += len(config.get("image_urls") or [])
    return count


# -----------------------------------------------------------------------------
# Image-to-video
# -----------------------------------------------------------------------------


def validate_image_to_video(config: Mapping[str, Any]) -> tuple[list[str], list[str], dict[str, Any]]:
    """Validate a start/end frame configuration."""

    errors: list[str] = []
    warnings: list[str] = []
    prompt = config.get("prompt")
    if not isinstance(prompt, str) or not prompt:
        errors.append("imageToVideoConfig.prompt is required")
    elif len(prompt.strip()) < MIN_VIDEO_PROMPT_CHARS:
        errors.append(f"imageToVideoConfig.prompt must contain at least {MIN_VIDEO_PROMPT_CHARS} characters")

    if not isinstance(config.get("start_image_url"), str) or not config.get("start_image_url"):
        errors.append("imageToVideoConfig.start_image_url is required")

    duration = config.get("duration")
    if isinstance(duration, str) and duration and duration not in VALID_DURATIONS:
        errors.append("imageToVideoConfig.duration must be the string '5' or '10'")

    if isinstance(prompt, str):
        if "@Image1" not in prompt:
            warnings.append("Reference the start frame as @Image1 in the prompt")
        if config.get("end_image_url") and "@Image2" not in prompt:
            warnings.append("end_image_url was supplied; reference it as @Image2 in the prompt")

    normalized: dict[str, Any] = {
        "prompt": prompt.strip() if isinstance(prompt, str) else "",
        "start_image_url": config.get("start_image_url"),
        "duration": duration or DEFAULT_DURATION,
    }
    if config.get("end_image_url"):
        normalized["end_image_url"] = config["end_image_url"]
    if config.get("negative_prompt") is not None:
        normalized["negative_prompt"] = config["negative_prompt"]
    return errors, warnings, normalized


# -----------------------------------------------------------------------------
# URL helpers
# -----------------------------------------------------------------------------


def is_valid_image_url(url: Any) -> bool:
    """Accept http(s) URLs and bare storage keys (no spaces, not absolute paths)."""

    if not isinstance(url, str):
        return False
    candidate = url.strip()
    if not candidate:
        return False
    if candidate.startswith(("http://", "https://")):
        parsed = urlparse(candidate)
        return bool(parsed.netloc)
    return " " not in candidate and not candidate.startswith("/")
