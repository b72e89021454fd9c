import pytest

from scoutchat.agent.plan import PlanModel
from scoutchat.core.schema import (
    PENDING_RESOLUTION,
    PlanStep,
    StepStatus,
)


def _plan() -> PlanModel:
    plan = PlanModel()
    plan.add('Search for information about: "a"', "web_search", {"query": "a"})
    plan.add("Read content from top result #1", "read_url", {"url": PENDING_RESOLUTION})
    plan.add("Read content from top result #2", "read_url", {"url": PENDING_RESOLUTION})
    plan.add('Search for information about: "b"', "web_search", {"query": "b"})
    plan.add("Read content from top result #1", "read_url", {"url": PENDING_RESOLUTION})
    plan.add("Summarize the findings from all read results", "summarize", {"snippets": []})
    return plan


def test_indices_stay_contiguous_after_insert_and_remove() -> None:
    plan = _plan()
    extra = PlanStep(index=0, description="Fallback", tool="instant_answer", arguments={"query": "a"})
    plan.insert_after(plan[0], extra)
    assert plan[1] is extra
    assert [s.index for s in plan] == [1, 2, 3, 4, 5, 6, 7]

    plan.remove(plan[2])
    plan.remove(extra)
    assert [s.index for s in plan] == [1, 2, 3, 4, 5]
    assert len(plan) == 5


def test_search_group_stops_at_next_search() -> None:
    plan = _plan()
    first, second = plan[0], plan[3]
    assert plan.search_group(first) == [plan[1], plan[2]]
    assert plan.search_group(second) == [plan[4]]
    assert plan.preceding_search(plan[4]) is second
    assert plan.preceding_search(first) is None


def test_only_one_step_in_progress() -> None:
    plan = _plan()
    plan.set_status(plan[0], StepStatus.IN_PROGRESS)
    with pytest.raises(ValueError):
        plan.set_status(plan[1], StepStatus.IN_PROGRESS)
    plan.set_status(plan[0], StepStatus.DONE, "3 results")
    plan.set_status(plan[1], StepStatus.IN_PROGRESS)
    assert plan[0].details == "3 results"
    assert plan[1].status is StepStatus.IN_PROGRESS


def test_has_step_matches_arguments() -> None:
    plan = _plan()
    assert plan.has_step("web_search", query="b")
    assert not plan.has_step("web_search", query="c")
    assert not plan.has_step("instant_answer")


def test_position_is_by_identity() -> None:
    plan = _plan()
    lookalike = plan[1].model_copy()
    with pytest.raises(ValueError):
        plan.position(lookalike)
    assert plan.position(plan[2]) == 2


def test_snapshot_is_detached() -> None:
    plan = _plan()
    snap = plan.snapshot()
    snap[0].status = StepStatus.ERROR
    assert plan[0].status is StepStatus.PENDING
