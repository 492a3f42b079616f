from services.alert_counters import AlertCounters
from services.classifier import Intent


def test_unknown_counter_is_zero(tmp_db):
    assert AlertCounters().outstanding() == 0


def test_failures_accumulate_and_passes_drain(tmp_db):
    counters = AlertCounters()

    assert counters.record(Intent.FAIL) == 1
    assert counters.record(Intent.FAIL) == 2
    assert counters.record(Intent.PENDING) == 2
    assert counters.record(Intent.PASS) == 1
    assert counters.record(Intent.PASS) == 0
    assert counters.record(Intent.PASS) == 0


def test_counters_are_per_name(tmp_db):
    counters = AlertCounters()
    counters.record(Intent.FAIL, name="ci")

    assert counters.outstanding("ci") == 1
    assert counters.outstanding("monitors") == 0


def test_should_set_idle_only_for_pass_with_nothing_outstanding(tmp_db):
    counters = AlertCounters()
    assert counters.should_set_idle(Intent.PASS)
    assert not counters.should_set_idle(Intent.FAIL)

    counters.record(Intent.FAIL)
    counters.record(Intent.FAIL)
    counters.record(Intent.PASS)

    assert not counters.should_set_idle(Intent.PASS)
