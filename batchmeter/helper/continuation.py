"""
Selection of the next shots for a continuation batch.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..model.batch_job import ContinuationInfo, ContinuationStrategy

ALL_DONE_MESSAGE = "all shots already have results"

Shot = Mapping[str, Any]


@dataclass
class ContinuationPlan:
    strategy: ContinuationStrategy
    batch: List[Dict[str, Any]] = field(default_factory=list)
    remaining_count: int = 0

    @property
    def all_done(self) -> bool:
        return not self.batch

    @property
    def message(self) -> str:
        return ALL_DONE_MESSAGE if self.all_done else ""

    def info(self) -> Optional[ContinuationInfo]:
        """Continuation record for the job, None if there is nothing to run."""
        if self.all_done:
            return None
        first, last = self.batch[0], self.batch[-1]
        return ContinuationInfo(
            strategy=self.strategy,
            range_start_scene=int(first.get("scene_number", 0)),
            range_start_shot=int(first.get("shot_number", 0)),
            range_end_scene=int(last.get("scene_number", 0)),
            range_end_shot=int(last.get("shot_number", 0)),
            remaining_count=self.remaining_count,
            all_done=self.remaining_count == 0,
        )

    def items(self) -> List[Dict[str, Any]]:
        """Batch shots as runner items keyed by shot id."""
        return [{**shot, "payload_key": str(shot["shot_id"])} for shot in self.batch]

    def to_dict(self) -> Dict[str, Any]:
        info = self.info()
        return {
            "all_done": self.all_done,
            "message": self.message,
            "remaining_count": self.remaining_count,
            "strategy": self.strategy.value,
            "range": info.range_label() if info else None,
            "shot_ids": [shot["shot_id"] for shot in self.batch],
        }


def select_next_batch(
    shots: Sequence[Shot],
    shots_with_results: Iterable[str],
    count: int = 100,
    strategy: Union[ContinuationStrategy, str] = ContinuationStrategy.STRICT,
) -> ContinuationPlan:
    """
    Pick up to ``count`` shots without a result, in scene/shot order.

    ``strict`` starts at the first shot without a result and so fills gaps
    left by failures. ``skip_failed`` starts after the last shot that has a
    result and leaves earlier gaps alone.

    :param shots: All shots, each with ``shot_id``, ``scene_number`` and ``shot_number``.
    :param shots_with_results: Ids of shots that already have a result.
    :raises ValueError: If ``count`` is not positive or the strategy is unknown.
    """
    if count < 1:
        raise ValueError("count must be at least 1")
    strategy = ContinuationStrategy(strategy)

    ordered = sorted(
        shots, key=lambda s: (s.get("scene_number", 0), s.get("shot_number", 0))
    )
    done = set(shots_with_results)

    def missing(shot: Shot) -> bool:
        return shot["shot_id"] not in done

    if strategy == ContinuationStrategy.STRICT:
        start = next((i for i, shot in enumerate(ordered) if missing(shot)), len(ordered))
    else:
        last_done = max((i for i, shot in enumerate(ordered) if not missing(shot)), default=-1)
        start = last_done + 1

    batch: List[Dict[str, Any]] = []
    for shot in ordered[start:]:
        if len(batch) >= count:
            break
        if missing(shot):
            batch.append(dict(shot))

    if not batch:
        return ContinuationPlan(strategy=strategy)

    total_missing = sum(1 for shot in ordered if missing(shot))
    return ContinuationPlan(
        strategy=strategy,
        batch=batch,
        remaining_count=total_missing - len(batch),
    )
