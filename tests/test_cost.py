"""Tests for credit estimation."""

from __future__ import annotations

import json

import pytest

from storyagent.ai.operations.cost import CostEstimator, CreditCosts, default_estimator, video_billing_seconds
from storyagent.ai.orchestration.errors import CostEstimationFailure
from storyagent.ai.orchestration.types import OperationInvocation


def _invocation(name: str, arguments: dict, call_id: str = "call_1") -> OperationInvocation:
    return OperationInvocation(id=call_id, name=name, raw_arguments=json.dumps(arguments))


def test_image_cost_counts_every_requested_image() -> None:
    estimate = CostEstimator().estimate(
        [_invocation("generate_image_asset", {"assets": [{"prompt": "A fox", "numImages": 2}, {"prompt": "A hare"}]})]
    )

    assert estimate is not None
    assert estimate.total == 3 * CreditCosts.IMAGE_GENERATION
    assert estimate.breakdown[0].operation == "generate_image_asset"
    assert estimate.breakdown[0].invocation_id == "call_1"


@pytest.mark.parametrize(
    ("duration", "expected_seconds"),
    [(None, 5), ("5", 5), ("7", 10), ("10", 10), (3, 5)],
)
def test_video_billing_rounds_to_five_or_ten_seconds(duration, expected_seconds) -> None:
    assert video_billing_seconds(duration) == expected_seconds


def test_video_cost_reads_mode_specific_duration() -> None:
    estimate = CostEstimator().estimate(
        [_invocation("generate_video_asset", {"imageToVideoConfig": {"duration": "10"}})]
    )

    assert estimate is not None
    assert estimate.total == 10 * CreditCosts.VIDEO_GENERATION_PER_SECOND


def test_flat_prices_and_free_operations() -> None:
    estimate = CostEstimator().estimate(
        [
            _invocation("generate_bgm", {"prompt": "calm piano"}, "a"),
            _invocation("generate_dialogue", {"text": "Hi", "voice_id": "v1"}, "b"),
            _invocation("delete_asset", {"assetIds": ["x"]}, "c"),
        ]
    )

    assert estimate is not None
    assert [item.credits for item in estimate.breakdown] == [
        CreditCosts.MUSIC_GENERATION,
        CreditCosts.DIALOGUE_GENERATION,
        0,
    ]
    assert estimate.total == CreditCosts.MUSIC_GENERATION + CreditCosts.DIALOGUE_GENERATION
    assert estimate.to_dict()["breakdown"][2] == {"functionCallId": "c", "functionName": "delete_asset", "credits": 0}


def test_estimation_failure_returns_none() -> None:
    broken = OperationInvocation(id="call_1", name="generate_image_asset", raw_arguments="{not json")

    assert CostEstimator().estimate([broken]) is None
    assert CostEstimator().estimate([_invocation("generate_video_asset", {"imageToVideoConfig": {"duration": "long"}})]) is None


def test_unreadable_duration_raises_estimation_failure() -> None:
    with pytest.raises(CostEstimationFailure):
        video_billing_seconds("long")


def test_custom_price_table_and_singleton() -> None:
    estimator = CostEstimator({"query_assets": lambda _args: (2, "lookup")})

    estimate = estimator.estimate([_invocation("query_assets", {})])

    assert estimate is not None
    assert estimate.total == 2
    assert estimate.breakdown[0].details == "lookup"
    assert default_estimator() is default_estimator()
