# tests/test_integration.py
"""End-to-end test of the core workflow."""
from rad_tutor.config import Settings
from rad_tutor.seed import seed_all
from rad_tutor.service import build_service


def _answers(cards, correct=True):
    for card in cards:
        if correct:
            yield card["correct_answer_index"]
        else:
            yield (card["correct_answer_index"] + 1) % len(card["options"])


def test_full_review_workflow(tmp_db, clock):
    """Simulate a few days of study and verify all systems work together."""
    # Setup
    service = build_service(Settings(db_path=tmp_db, quick_session_size=5, review_session_size=8), clock=clock)
    seed_all(tmp_db)

    # Day 1: daily challenge, all correct
    daily = service.start_session("u1", "daily")
    assert len(daily["cards"]) == 5
    for answer in _answers(daily["cards"]):
        result = service.submit_answer(daily["session_id"], answer, time_spent_ms=12000)
    assert result["completed"]
    done = service.complete_session(daily["session_id"])
    assert done["summary"]["accuracy"] == 100
    assert done["bonus_xp"] == 35

    # A quick session answered wrong twice over makes weak cases
    quick = service.start_session("u1", "quick")
    missed_ids = {c["case_id"] for c in quick["cards"]}
    for answer in _answers(quick["cards"], correct=False):
        service.submit_answer(quick["session_id"], answer)
    for case_id in missed_ids:
        service.record_attempt(case_id, False, user_id="u1")

    weak = service.start_session("u1", "weakness")
    assert {c["case_id"] for c in weak["cards"]} == missed_ids
    service.complete_session(weak["session_id"])

    # Day 2: everything answered yesterday is due
    clock.advance(days=1)
    seen = {c["case_id"] for c in daily["cards"]} | missed_ids
    due = service.get_due_for_review("u1", limit=8)
    assert due["total_due"] == min(8, len(seen))
    assert due["total_due"] + due["total_new"] == 8
    assert {c["id"] for c in due["due_cases"]} <= seen

    review = service.start_session("u1", "review")
    assert len(review["cards"]) == 8
    first = review["cards"][0]
    service.submit_answer(review["session_id"], first["correct_answer_index"])
    service.put_active_session("u1", {"session_id": review["session_id"], "current_index": 1}, "laptop")

    # Resume from another device within the TTL
    clock.advance(minutes=10)
    snapshot = service.get_active_session("u1")
    assert snapshot["device_id"] == "laptop"
    resumed = service.get_session(snapshot["state"]["session_id"])
    for card in resumed["cards"][resumed["current_index"]:]:
        service.submit_answer(review["session_id"], card["correct_answer_index"])
    service.delete_active_session("u1")
    assert service.get_session(review["session_id"])["status"] == "completed"

    # Stats
    summary = service.get_progress_summary("u1")
    assert summary["total_attempts"] == 5 + 5 + 5 + 8
    assert summary["unique_cases"] >= len(seen)
    assert len(summary["streak_data"]) == 2

    readiness = service.get_board_readiness("u1")
    assert 0 < readiness["total"] <= 100
    assert readiness["breakdown"]["consistency"]["detail"] == "2/20 days"

    # Rebuilding from the attempt log reproduces the stored state
    before = service.get_due_for_review("u1", limit=50)
    assert service.rebuild_progress("u1")["rebuilt"] == summary["unique_cases"]
    after = service.get_due_for_review("u1", limit=50)
    assert {c["id"] for c in after["due_cases"]} == {c["id"] for c in before["due_cases"]}
