from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import get_type_hints

import pytest

from contest_core import (
    AuthorizationError,
    ConsistencyError,
    ContestPayload,
    InMemoryProblemCatalog,
    Participant,
    ProblemInfo,
    ValidationError,
    check_integrity,
    create_contest,
    public_view,
    update_contest,
)
from contest_core.contest import add_admin, remove_admin

T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _payload(**overrides):
    payload = {
        "title": "Spring Cup",
        "description": "Warm-up round",
        "startTime": T0,
        "endTime": T0 + timedelta(hours=2),
        "problems": [
            {"problem": "p-1", "label": "A"},
            {"problem": "p-2", "label": "B"},
        ],
    }
    payload.update(overrides)
    return payload


def test_create_derives_duration_and_defaults():
    contest = create_contest(_payload(), "owner", contest_id="c1")
    assert contest.id == "c1"
    assert contest.duration == 120
    assert contest.end_time == contest.start_time + timedelta(minutes=contest.duration)
    assert contest.mode == "acm"
    assert contest.type == "public"
    assert [p.score for p in contest.problems] == [100, 100]
    assert contest.total_participants == 0
    assert contest.version == 0
    assert contest.allow_view_ranking is True


def test_naive_times_are_treated_as_utc():
    naive = T0.replace(tzinfo=None)
    contest = create_contest(
        _payload(startTime=naive, endTime=naive + timedelta(minutes=30)), "owner"
    )
    assert contest.start_time == T0
    assert contest.duration == 30


@pytest.mark.parametrize("minutes", [29, 10081])
def test_duration_out_of_range_is_rejected(minutes):
    with pytest.raises(ValidationError) as exc:
        create_contest(_payload(endTime=T0 + timedelta(minutes=minutes)), "owner")
    assert exc.value.kind == "invalid_contest"
    assert exc.value.status_code == 400


def test_duration_bounds_are_inclusive():
    assert create_contest(_payload(endTime=T0 + timedelta(minutes=30)), "o").duration == 30
    assert create_contest(_payload(endTime=T0 + timedelta(minutes=10080)), "o").duration == 10080


def test_end_before_start_is_rejected():
    with pytest.raises(ValidationError):
        create_contest(_payload(endTime=T0), "owner")
    with pytest.raises(ValidationError):
        create_contest(_payload(endTime=T0 - timedelta(hours=1)), "owner")


def test_explicit_duration_must_match_schedule():
    assert create_contest(_payload(duration=120), "owner").duration == 120
    with pytest.raises(ValidationError):
        create_contest(_payload(duration=90), "owner")


def test_partial_minutes_are_rejected():
    with pytest.raises(ValidationError):
        create_contest(_payload(endTime=T0 + timedelta(minutes=45, seconds=30)), "owner")


@pytest.mark.parametrize("label", ["a", "AA", "1", "", "Ä"])
def test_bad_labels_are_rejected(label):
    with pytest.raises(ValidationError):
        create_contest(_payload(problems=[{"problem": "p-1", "label": label}]), "owner")


def test_duplicate_labels_are_rejected():
    problems = [{"problem": "p-1", "label": "A"}, {"problem": "p-2", "label": "A"}]
    with pytest.raises(ValidationError) as exc:
        create_contest(_payload(problems=problems), "owner")
    assert "unique" in str(exc.value)


def test_problem_count_bounds():
    with pytest.raises(ValidationError):
        create_contest(_payload(problems=[]), "owner")
    letters = [chr(ord("A") + i) for i in range(26)]
    problems = [{"problem": f"p-{l}", "label": l} for l in letters]
    assert len(create_contest(_payload(problems=problems), "owner").problems) == 26


def test_protected_contest_requires_password():
    with pytest.raises(ValidationError):
        create_contest(_payload(type="protected"), "owner")
    with pytest.raises(ValidationError):
        create_contest(_payload(type="protected", password=""), "owner")
    contest = create_contest(_payload(type="protected", password="s3cret"), "owner")
    assert contest.password == "s3cret"
    assert "s3cret" not in repr(contest)


def test_password_only_allowed_on_protected():
    with pytest.raises(ValidationError):
        create_contest(_payload(type="public", password="x"), "owner")


def test_freeze_time_bounds():
    assert create_contest(_payload(freezeTime=60), "owner").freeze_time == 60
    with pytest.raises(ValidationError):
        create_contest(_payload(freezeTime=301), "owner")
    with pytest.raises(ValidationError):
        create_contest(_payload(freezeTime=-1), "owner")
    with pytest.raises(ValidationError):
        create_contest(
            _payload(endTime=T0 + timedelta(minutes=30), freezeTime=45), "owner"
        )


def test_unknown_payload_keys_are_rejected():
    with pytest.raises(ValidationError):
        create_contest(_payload(ranking=[]), "owner")


def test_catalog_supplies_default_weight_and_checks_problem():
    catalog = InMemoryProblemCatalog(
        [ProblemInfo("p-1", "Sum", default_score=250), ProblemInfo("p-2", "Sort")]
    )
    contest = create_contest(
        _payload(
            mode="oi",
            problems=[
                {"problem": "p-1", "label": "A"},
                {"problem": "p-2", "label": "B"},
            ],
        ),
        "owner",
        catalog=catalog,
    )
    assert [p.score for p in contest.problems] == [250, 100]

    with pytest.raises(ValidationError) as exc:
        create_contest(
            _payload(problems=[{"problem": "missing", "label": "A"}]), "owner", catalog=catalog
        )
    assert exc.value.kind == "unknown_problem"


def test_explicit_weight_beats_catalog_default():
    catalog = InMemoryProblemCatalog([ProblemInfo("p-1", "Sum", default_score=250)])
    contest = create_contest(
        _payload(problems=[{"problem": "p-1", "label": "A", "score": 40}]),
        "owner",
        catalog=catalog,
    )
    assert contest.problems[0].score == 40


def test_update_before_start_bumps_version():
    contest = create_contest(_payload(), "owner")
    updated = update_contest(
        contest,
        {"endTime": T0 + timedelta(hours=3), "title": "Spring Cup II"},
        "owner",
        now=T0 - timedelta(days=1),
    )
    assert updated.version == contest.version + 1
    assert updated.duration == 180
    assert updated.title == "Spring Cup II"
    assert contest.duration == 120


def test_schedule_and_problem_edits_locked_once_running():
    contest = create_contest(_payload(), "owner")
    running = T0 + timedelta(minutes=5)
    with pytest.raises(ValidationError) as exc:
        update_contest(contest, {"endTime": T0 + timedelta(hours=3)}, "owner", now=running)
    assert exc.value.kind == "contest_locked"
    with pytest.raises(ValidationError):
        update_contest(
            contest, {"problems": [{"problem": "p-9", "label": "A"}]}, "owner", now=running
        )
    with pytest.raises(ValidationError):
        update_contest(contest, {"mode": "oi"}, "owner", now=running)


def test_resubmitting_unchanged_schedule_is_allowed_while_running():
    contest = create_contest(_payload(), "owner")
    running = T0 + timedelta(minutes=5)
    # Same instant as a naive datetime, problems without the default score.
    updated = update_contest(
        contest,
        {
            "title": "Spring Cup (live)",
            "startTime": T0.replace(tzinfo=None),
            "problems": [
                {"problem": "p-1", "label": "A"},
                {"problem": "p-2", "label": "B"},
            ],
            "mode": "acm",
        },
        "owner",
        now=running,
    )
    assert updated.title == "Spring Cup (live)"
    assert updated.start_time == T0
    assert updated.problems == contest.problems
    assert updated.version == contest.version + 1

    with pytest.raises(ValidationError) as exc:
        update_contest(
            contest,
            {"problems": [{"problem": "p-1", "label": "A", "score": 40}, {"problem": "p-2", "label": "B"}]},
            "owner",
            now=running,
        )
    assert exc.value.kind == "contest_locked"


def test_cosmetic_edits_allowed_while_running():
    contest = create_contest(_payload(), "owner")
    updated = update_contest(
        contest,
        {"description": "Good luck", "allowViewRanking": False},
        "owner",
        now=T0 + timedelta(minutes=5),
    )
    assert updated.description == "Good luck"
    assert updated.allow_view_ranking is False


def test_update_requires_admin():
    contest = create_contest(_payload(admins=["helper"]), "owner")
    with pytest.raises(AuthorizationError) as exc:
        update_contest(contest, {"title": "X"}, "stranger", now=T0 - timedelta(days=1))
    assert exc.value.kind == "not_contest_admin"
    assert update_contest(contest, {"title": "X"}, "helper", now=T0 - timedelta(days=1)).title == "X"
    assert (
        update_contest(contest, {"title": "Y"}, "stranger", now=T0 - timedelta(days=1), site_admin=True).title
        == "Y"
    )


def test_update_revalidates_invariants():
    contest = create_contest(_payload(), "owner")
    with pytest.raises(ValidationError):
        update_contest(contest, {"type": "protected"}, "owner", now=T0 - timedelta(days=1))


def test_cancelled_contest_cannot_be_edited():
    contest = replace(create_contest(_payload(), "owner"), cancelled=True)
    with pytest.raises(ValidationError) as exc:
        update_contest(contest, {"title": "X"}, "owner", now=T0 - timedelta(days=1))
    assert exc.value.kind == "contest_cancelled"


def test_admin_management_is_owner_only():
    contest = create_contest(_payload(admins=["helper"]), "owner")
    updated = add_admin(contest, "owner", "second")
    assert updated.admins == frozenset({"helper", "second"})
    assert updated.version == contest.version + 1
    assert add_admin(updated, "owner", "second") is updated
    with pytest.raises(AuthorizationError):
        add_admin(contest, "helper", "third")
    assert remove_admin(updated, "owner", "helper").admins == frozenset({"second"})


def test_public_view_omits_password():
    contest = create_contest(_payload(type="protected", password="s3cret"), "owner")
    view = public_view(contest)
    assert "password" not in view
    assert view["hasPassword"] is True
    assert view["totalParticipants"] == 0
    assert [p["label"] for p in view["problems"]] == ["A", "B"]


def test_integrity_check_flags_duplicate_membership():
    contest = create_contest(_payload(), "owner")
    p = Participant(user_id="u1", join_time=T0)
    broken = replace(contest, participants=(p, p), total_participants=2)
    with pytest.raises(ConsistencyError) as exc:
        check_integrity(broken)
    assert exc.value.kind == "duplicate_membership"

    miscounted = replace(contest, participants=(p,), total_participants=0)
    with pytest.raises(ConsistencyError):
        check_integrity(miscounted)


def test_payload_parameters_use_contest_payload_shape():
    assert get_type_hints(create_contest)["payload"] is ContestPayload
    assert get_type_hints(update_contest)["changes"] is ContestPayload
