import pytest

from app.domain.scoring import normalize_score, parse_score


@pytest.mark.unit
def test_normalize_score_clamps_and_rounds_to_one_decimal() -> None:
    assert normalize_score(7.46) == 7.5
    assert normalize_score(-3) == 0.0
    assert normalize_score(11.2) == 10.0


@pytest.mark.unit
def test_parse_score_accepts_numbers_and_numeric_strings() -> None:
    assert parse_score(8) == 8.0
    assert parse_score(" 6.5 ") == 6.5


@pytest.mark.unit
@pytest.mark.parametrize("value", [None, True, "eight", float("nan"), {"score": 5}])
def test_parse_score_rejects_non_numeric_values(value: object) -> None:
    assert parse_score(value) is None
