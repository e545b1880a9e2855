import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateTable

from app.core.errors import InvalidExclusion
from app.core.exclusions import ExclusionPair, ExclusionSet, normalize_pair
from app.models.models import DrawExclusion


def test_normalize_pair_sorts_ids():
    assert normalize_pair("zoe", "adam") == ExclusionPair("adam", "zoe")
    assert normalize_pair("adam", "zoe") == ExclusionPair("adam", "zoe")


def test_normalize_pair_strips_whitespace():
    assert normalize_pair(" b ", "a") == ExclusionPair("a", "b")


@pytest.mark.parametrize("a, b", [("same", "same"), (" same", "same "), ("", "x"), ("x", "  ")])
def test_normalize_pair_rejects_invalid(a, b):
    with pytest.raises(InvalidExclusion) as excinfo:
        normalize_pair(a, b)
    assert excinfo.value.code == "invalid_exclusion"
    assert excinfo.value.status_code == 400


def test_exclusion_set_is_symmetric():
    excluded = ExclusionSet([("a", "b")])
    assert excluded.excludes("a", "b")
    assert excluded.excludes("b", "a")
    assert ("b", "a") in excluded
    assert not excluded.excludes("a", "c")


def test_exclusion_set_collapses_inverse_duplicates():
    excluded = ExclusionSet([("a", "b"), ("b", "a"), ("a", "b")])
    assert len(excluded) == 1
    assert list(excluded) == [ExclusionPair("a", "b")]


def test_exclusion_set_drops_pairs_outside_members():
    excluded = ExclusionSet([("a", "b"), ("a", "gone")], members=["a", "b", "c"])
    assert len(excluded) == 1
    assert not excluded.excludes("a", "gone")


def test_allows_rejects_self_and_excluded():
    excluded = ExclusionSet([("a", "b")])
    assert not excluded.allows("a", "a")
    assert not excluded.allows("b", "a")
    assert excluded.allows("a", "c")


def test_mixed_case_ids_sort_by_code_point():
    assert normalize_pair("alice", "Bob") == ExclusionPair("Bob", "alice")


def test_postgres_pair_columns_compare_bytewise():
    ddl = str(CreateTable(DrawExclusion.__table__).compile(dialect=postgresql.dialect()))
    for column in ("user_a_id", "user_b_id"):
        line = next(part for part in ddl.splitlines() if part.strip().startswith(column))
        assert 'COLLATE "C"' in line
