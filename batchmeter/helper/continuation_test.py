"""
Test cases for continuation batch selection.
"""

import pytest

from ..model.batch_job import ContinuationStrategy
from .continuation import ALL_DONE_MESSAGE, select_next_batch


def _shot(scene: int, shot: int) -> dict:
    return {
        "shot_id": f"s{scene}.{shot}",
        "scene_number": scene,
        "shot_number": shot,
        "image_prompt": f"scene {scene} shot {shot}",
    }


# Deliberately unordered.
SHOTS = [_shot(2, 1), _shot(1, 3), _shot(1, 1), _shot(2, 2), _shot(1, 2)]


def _ids(plan):
    return [shot["shot_id"] for shot in plan.batch]


class TestStrict:
    def test_fills_gaps_first(self):
        plan = select_next_batch(SHOTS, ["s1.1", "s1.3"], count=2, strategy="strict")

        assert _ids(plan) == ["s1.2", "s2.1"]
        assert plan.remaining_count == 1
        assert not plan.all_done

        info = plan.info()
        assert info.strategy == ContinuationStrategy.STRICT
        assert info.range_label() == "S1.2 → S2.1"
        assert info.remaining_count == 1
        assert not info.all_done

    def test_takes_everything_missing_when_count_allows(self):
        plan = select_next_batch(SHOTS, [], count=100)

        assert _ids(plan) == ["s1.1", "s1.2", "s1.3", "s2.1", "s2.2"]
        assert plan.remaining_count == 0
        assert plan.info().all_done


class TestSkipFailed:
    def test_starts_after_last_result(self):
        plan = select_next_batch(
            SHOTS, ["s1.1", "s1.3"], count=2, strategy=ContinuationStrategy.SKIP_FAILED
        )

        assert _ids(plan) == ["s2.1", "s2.2"]
        assert plan.remaining_count == 1
        assert plan.info().range_label() == "S2.1 → S2.2"

    def test_without_results_starts_at_beginning(self):
        plan = select_next_batch(SHOTS, [], count=3, strategy="skip_failed")

        assert _ids(plan) == ["s1.1", "s1.2", "s1.3"]
        assert plan.remaining_count == 2

    def test_last_shot_done_leaves_nothing(self):
        plan = select_next_batch(SHOTS, ["s2.2"], count=10, strategy="skip_failed")

        assert plan.all_done
        assert plan.remaining_count == 0


class TestPlan:
    def test_all_done(self):
        plan = select_next_batch(SHOTS, [s["shot_id"] for s in SHOTS])

        assert plan.all_done
        assert plan.info() is None
        assert plan.to_dict() == {
            "all_done": True,
            "message": ALL_DONE_MESSAGE,
            "remaining_count": 0,
            "strategy": "strict",
            "range": None,
            "shot_ids": [],
        }

    def test_items_are_keyed_by_shot_id(self):
        plan = select_next_batch(SHOTS, [], count=1)

        items = plan.items()
        assert items[0]["payload_key"] == "s1.1"
        assert items[0]["image_prompt"] == "scene 1 shot 1"

    def test_batch_is_a_copy(self):
        plan = select_next_batch(SHOTS, [], count=1)
        plan.batch[0]["image_prompt"] = "changed"

        assert _shot(1, 1)["image_prompt"] == "scene 1 shot 1"
        assert all(s["image_prompt"] != "changed" for s in SHOTS)

    @pytest.mark.parametrize("count", [0, -3])
    def test_rejects_non_positive_count(self, count):
        with pytest.raises(ValueError):
            select_next_batch(SHOTS, [], count=count)

    def test_rejects_unknown_strategy(self):
        with pytest.raises(ValueError):
            select_next_batch(SHOTS, [], strategy="newest_first")
