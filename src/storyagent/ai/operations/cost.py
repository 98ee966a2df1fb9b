"""Best-effort credit estimation for gated operations."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, Mapping

from ..orchestration.errors import CostEstimationFailure
from ..orchestration.types import CostEstimate, CostLineItem, OperationInvocation
from .validation import parse_arguments

__all__ = [
    "CreditCosts",
    "CostEstimator",
    "PriceFunction",
    "default_estimator",
    "video_billing_seconds",
]

LOGGER = logging.getLogger(__name__)


class CreditCosts:
    """Credit prices per unit."""

    IMAGE_GENERATION = 6
    VIDEO_GENERATION_PER_SECOND = 6
    SOUND_EFFECT_GENERATION = 1
    DIALOGUE_GENERATION = 1
    MUSIC_GENERATION = 10


PriceFunction = Callable[[Mapping[str, Any]], tuple[int, str | None]]


def video_billing_seconds(duration: Any) -> int:
    """Clip lengths bill as 5 or 10 seconds."""

    try:
        seconds = float(duration) if duration not in (None, "") else 5.0
    except (TypeError, ValueError) as exc:
        raise CostEstimationFailure(message=f"Unreadable video duration: {duration!r}") from exc
    return 10 if seconds > 5 else 5


def _price_images(arguments: Mapping[str, Any]) -> tuple[int, str | None]:
    assets = arguments.get("assets")
    if not isinstance(assets, list):
        raise CostEstimationFailure(message="'assets' is not a list")
    images = sum(int(asset.get("numImages") or 1) for asset in assets)
    return images * CreditCosts.IMAGE_GENERATION, f"{images} image(s) x {CreditCosts.IMAGE_GENERATION} credits"


def _price_video(arguments: Mapping[str, Any]) -> tuple[int, str | None]:
    config = arguments.get("referenceToVideoConfig") or arguments.get("imageToVideoConfig") or {}
    seconds = video_billing_seconds(config.get("duration"))
    credits = seconds * CreditCosts.VIDEO_GENERATION_PER_SECOND
    return credits, f"{seconds}s video x {CreditCosts.VIDEO_GENERATION_PER_SECOND} credits/s"


def _flat(credits: int, label: str) -> PriceFunction:
    def price(_: Mapping[str, Any]) -> tuple[int, str | None]:
        return credits, label

    return price


_DEFAULT_PRICES: Mapping[str, PriceFunction] = {
    "generate_image_asset": _price_images,
    "generate_video_asset": _price_video,
    "generate_sound_effect": _flat(CreditCosts.SOUND_EFFECT_GENERATION, "sound effect"),
    "generate_dialogue": _flat(CreditCosts.DIALOGUE_GENERATION, "dialogue line"),
    "generate_bgm": _flat(CreditCosts.MUSIC_GENERATION, "background music"),
}


class CostEstimator:
    """Computes a credit preview for pending invocations.

    :meth:`estimate` never raises: any failure is logged and reported as
    ``None`` so the caller can continue without a cost.
    """

    def __init__(self, prices: Mapping[str, PriceFunction] | None = None) -> None:
        self._prices = dict(_DEFAULT_PRICES if prices is None else prices)

    def estimate(self, invocations: Iterable[OperationInvocation]) -> CostEstimate | None:
        try:
            items = tuple(self._price(invocation) for invocation in invocations)
        except Exception as exc:
            LOGGER.warning("Cost estimation failed: %s", exc)
            LOGGER.debug("Cost estimation traceback", exc_info=True)
            return None
        return CostEstimate(total=sum(item.credits for item in items), breakdown=items)

    def _price(self, invocation: OperationInvocation) -> CostLineItem:
        price = self._prices.get(invocation.name)
        if price is None:
            return CostLineItem(invocation_id=invocation.id, operation=invocation.name, credits=0)
        arguments = invocation.parsed_arguments
        if arguments is None:
            arguments = parse_arguments(invocation.raw_arguments)
        credits, details = price(arguments)
        return CostLineItem(
            invocation_id=invocation.id,
            operation=invocation.name,
            credits=int(credits),
            details=details,
        )


_DEFAULT_ESTIMATOR: CostEstimator | None = None
_DEFAULT_LOCK = threading.Lock()


def default_estimator() -> CostEstimator:
    """Return the process-wide estimator."""

    global _DEFAULT_ESTIMATOR
    if _DEFAULT_ESTIMATOR is None:
        with _DEFAULT_LOCK:
            if _DEFAULT_ESTIMATOR is None:
                _DEFAULT_ESTIMATOR = CostEstimator()
    return _DEFAULT_ESTIMATOR
