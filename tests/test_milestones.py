from dailydraw.milestones import Milestone, countdown_stage, evaluate, format_remaining


def test_fires_only_on_exact_threshold():
    assert evaluate(3601, set()) == (None, frozenset())
    milestone, fired = evaluate(3600, set())
    assert milestone is Milestone.ONE_HOUR
    assert fired == {Milestone.ONE_HOUR}


def test_hour_milestone_fires_once_across_consecutive_ticks():
    fired: frozenset = frozenset()
    seen = []
    for remaining in (3601, 3600, 3599):
        milestone, fired = evaluate(remaining, fired)
        if milestone is not None:
            seen.append(milestone)
    assert seen == [Milestone.ONE_HOUR]


def test_already_fired_milestone_is_not_repeated():
    milestone, fired = evaluate(600, {Milestone.TEN_MINUTES})
    assert milestone is None
    assert fired == {Milestone.TEN_MINUTES}


def test_skipped_threshold_is_not_replayed():
    # the process was suspended across the 60 second mark
    milestone, fired = evaluate(59, set())
    assert milestone is None
    assert fired == frozenset()


def test_urgency_and_minutes():
    assert not Milestone.ONE_HOUR.urgent
    assert Milestone.TEN_MINUTES.urgent
    assert Milestone.ONE_MINUTE.urgent
    assert [m.minutes for m in Milestone] == [60, 10, 1]


def test_countdown_stage_boundaries():
    assert countdown_stage(86400) == "normal"
    assert countdown_stage(3601) == "normal"
    assert countdown_stage(3600) == "urgent"
    assert countdown_stage(601) == "urgent"
    assert countdown_stage(600) == "final"
    assert countdown_stage(0) == "final"


def test_format_remaining():
    assert format_remaining(86400) == "24:00:00"
    assert format_remaining(3661) == "01:01:01"
    assert format_remaining(59) == "00:00:59"
    assert format_remaining(-5) == "00:00:00"


def test_threshold_between_two_jittered_ticks_counts_as_observed():
    milestone, fired = evaluate(3599, set(), previous_seconds=3601)
    assert milestone is Milestone.ONE_HOUR
    assert fired == {Milestone.ONE_HOUR}


def test_jitter_allowance_covers_a_single_second_only():
    assert evaluate(3599, set(), previous_seconds=3602) == (None, frozenset())
    assert evaluate(598, set(), previous_seconds=600)[0] is None
    assert evaluate(3599, {Milestone.ONE_HOUR}, previous_seconds=3601)[0] is None
