import pytest

from screening.calibration import decide, calibrate, clamp01, NORMAL, ABNORMAL
from screening.config import LOW, HIGH, THRESHOLD_DEFAULT

RAWS = [-5.0, 0.0, LOW - 1e-6, LOW, 0.12, THRESHOLD_DEFAULT, 0.2, HIGH, HIGH + 1e-6, 0.9, 1.0, 7.0]

def test_label_threshold_is_strict():
    assert decide(THRESHOLD_DEFAULT, THRESHOLD_DEFAULT).label == NORMAL
    assert decide(THRESHOLD_DEFAULT + 1e-9, THRESHOLD_DEFAULT).label == ABNORMAL

def test_single_channel_example():
    r = decide(0.9, 0.5)
    assert r.label == ABNORMAL
    assert r.raw_score == 0.9

def test_score_exact_at_and_beyond_anchors():
    for raw in (LOW, LOW - 0.05, -3.0):
        assert calibrate(raw) == 0.0
    for raw in (HIGH, HIGH + 0.05, 12.0):
        assert calibrate(raw) == 1.0

def test_score_linear_between_anchors():
    mid = (LOW + HIGH) / 2
    assert calibrate(mid) == pytest.approx(0.5)

@pytest.mark.parametrize("raw", RAWS)
def test_clamp_idempotent(raw):
    s = calibrate(raw)
    assert clamp01(s) == s

@pytest.mark.parametrize("raw", RAWS)
@pytest.mark.parametrize("thr", [0.0, THRESHOLD_DEFAULT, 0.5])
def test_confidence_direction(raw, thr):
    r = decide(raw, thr)
    assert 0.0 <= r.score <= 1.0
    assert 0.0 <= r.confidence <= 1.0
    if r.label == ABNORMAL:
        assert r.confidence == r.score
    else:
        assert r.confidence == 1.0 - r.score

def test_result_is_immutable():
    r = decide(0.2)
    with pytest.raises(Exception):
        r.label = NORMAL
