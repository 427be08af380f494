from core.geo_filter import GeoSampleFilter, SampleHistory
from tests.conftest import NOW_MS, fix


def evaluate_all(sample_filter, samples, now_ms=NOW_MS):
    history = SampleHistory(sample_filter.stability_threshold)
    verdicts = []
    for sample in samples:
        history.push(sample)
        verdicts.append(sample_filter.evaluate(history, now_ms))
    return history, verdicts


def test_clean_fix_is_trusted():
    _, verdicts = evaluate_all(GeoSampleFilter(), [fix()])
    assert verdicts[0].trusted
    assert verdicts[0].reason is None


def test_mock_flag_rejected_by_default():
    _, verdicts = evaluate_all(GeoSampleFilter(), [fix(mock=True)])
    assert not verdicts[0].trusted
    assert verdicts[0].reason == "mock location"


def test_mock_flag_allowed_when_policy_is_off():
    _, verdicts = evaluate_all(GeoSampleFilter(reject_mock=False), [fix(mock=True)])
    assert verdicts[0].trusted


def test_sub_meter_accuracy_is_implausible():
    _, verdicts = evaluate_all(GeoSampleFilter(), [fix(accuracy=0.3), fix(accuracy=1.0)])
    assert verdicts[0].reason == "implausible accuracy"
    assert verdicts[1].trusted


def test_stale_fix():
    _, verdicts = evaluate_all(GeoSampleFilter(), [fix(at=NOW_MS - 6000)])
    assert verdicts[0].reason == "stale fix"


def test_fix_exactly_at_max_age_is_fresh():
    _, verdicts = evaluate_all(GeoSampleFilter(), [fix(at=NOW_MS - 5000)])
    assert verdicts[0].trusted


def test_identical_coordinates_become_stagnant():
    samples = [fix(lat=-6.2, lng=106.8, accuracy=8.0 + i) for i in range(11)]
    history, verdicts = evaluate_all(GeoSampleFilter(), samples)
    assert all(v.trusted for v in verdicts[:10])
    assert verdicts[10].reason == "stagnant signal"
    assert history.stagnant_coord_count == 10


def test_identical_accuracy_becomes_stagnant():
    samples = [fix(lat=-6.2 + i * 1e-6, accuracy=5.0) for i in range(11)]
    history, verdicts = evaluate_all(GeoSampleFilter(), samples)
    assert verdicts[9].trusted
    assert verdicts[10].reason == "stagnant signal"
    assert history.stagnant_accuracy_count == 10


def test_jitter_resets_the_counters():
    samples = [fix(accuracy=5.0) for _ in range(9)]
    samples.append(fix(lat=-6.20001, accuracy=5.5))
    history, verdicts = evaluate_all(GeoSampleFilter(), samples)
    assert all(v.trusted for v in verdicts)
    assert history.stagnant_coord_count == 0
    assert history.stagnant_accuracy_count == 0


def test_history_is_newest_first_and_bounded():
    history = SampleHistory(3)
    for i in range(5):
        history.push(fix(accuracy=float(i + 1)))
    assert len(history) == 3
    assert history.latest.accuracy_meters == 5.0
    assert history.previous.accuracy_meters == 4.0
