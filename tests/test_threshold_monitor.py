import pytest

from pipelines.threshold_monitor import evaluate


@pytest.mark.parametrize(
    "levels",
    [(9, 0, 0), (0, 9, 0), (0, 0, 9), (10, 10, 10), (7, 7, 7), (8, 8, 8), (9, 5, 6)],
)
def test_evaluate_raises(levels):
    assert evaluate(*levels) is True


@pytest.mark.parametrize(
    "levels",
    [(6, 7, 7), (7, 6, 7), (7, 7, 6), (8, 8, 0), (7, 5, 6), (5, 4, 6), (0, 0, 0)],
)
def test_evaluate_quiet(levels):
    assert evaluate(*levels) is False


def test_evaluate_is_stateless():
    assert evaluate(9, 0, 0) is True
    assert evaluate(9, 0, 0) is True
    assert evaluate(1, 1, 1) is False
