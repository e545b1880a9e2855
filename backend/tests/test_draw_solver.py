import random
import time

import pytest

from app.core.draw_solver import DrawInfeasible, solve


def assert_valid_draw(members, exclusions, result):
    assert set(result) == set(members)
    assert sorted(result.values()) == sorted(set(members))
    for giver, receiver in result.items():
        assert giver != receiver
        assert (giver, receiver) not in exclusions
        assert (receiver, giver) not in exclusions


class TestSolveValidDraws:
    @pytest.mark.parametrize("size", [2, 3, 4, 7, 12, 30])
    def test_result_is_a_derangement(self, size):
        members = [f"user-{i:02d}" for i in range(size)]
        for seed in range(20):
            result = solve(members, rng=random.Random(seed))
            assert_valid_draw(members, set(), result)

    def test_two_members_swap(self):
        assert solve(["a", "b"], rng=random.Random(3)) == {"a": "b", "b": "a"}

    def test_couples_never_gift_each_other(self):
        couples = [("ana", "bruno"), ("carla", "diego"), ("elena", "fran"), ("gema", "hugo")]
        members = [person for couple in couples for person in couple]
        exclusions = set(couples)
        for seed in range(25):
            result = solve(members, exclusions, rng=random.Random(seed))
            assert_valid_draw(members, exclusions, result)

    def test_exclusion_is_undirected(self):
        members = ["a", "b", "c", "d"]
        # Stored as (b, a): the a -> b direction must be blocked too.
        exclusions = {("b", "a")}
        for seed in range(30):
            result = solve(members, exclusions, rng=random.Random(seed))
            assert result["a"] != "b"
            assert result["b"] != "a"

    def test_unknown_ids_in_exclusions_are_ignored(self):
        result = solve(["a", "b"], [("a", "ghost"), ("ghost", "b")], rng=random.Random(1))
        assert result == {"a": "b", "b": "a"}

    def test_duplicate_members_collapse(self):
        result = solve(["a", "b", "a", "c"], rng=random.Random(5))
        assert_valid_draw(["a", "b", "c"], set(), result)

    def test_same_seed_same_draw(self):
        members = ["m1", "m2", "m3", "m4", "m5", "m6"]
        first = solve(members, [("m1", "m2")], rng=random.Random(99))
        second = solve(list(reversed(members)), [("m2", "m1")], rng=random.Random(99))
        assert first == second


class TestBacktrackingFallback:
    def test_exact_search_finds_draw_without_shuffles(self):
        members = ["a", "b", "c", "d", "e"]
        exclusions = {("a", "b"), ("c", "d")}
        for seed in range(15):
            result = solve(members, exclusions, rng=random.Random(seed), shuffle_attempts=0)
            assert_valid_draw(members, exclusions, result)

    def test_every_giver_down_to_two_options(self):
        members = ["a", "b", "c", "d"]
        exclusions = {("a", "c"), ("b", "d")}
        result = solve(members, exclusions, rng=random.Random(7), shuffle_attempts=0)
        assert_valid_draw(members, exclusions, result)


class TestInfeasible:
    def test_two_excluded_members(self):
        with pytest.raises(DrawInfeasible) as excinfo:
            solve(["a", "b"], [("a", "b")], rng=random.Random(0))
        assert excinfo.value.exhausted is False

    def test_three_members_with_one_exclusion(self):
        # Both 3-cycles use the a/b edge in some direction.
        with pytest.raises(DrawInfeasible) as excinfo:
            solve(["a", "b", "c"], [("a", "b")], rng=random.Random(0))
        assert excinfo.value.exhausted is False

    def test_member_excluded_from_everyone(self):
        members = ["a", "b", "c", "d"]
        exclusions = [("a", "b"), ("a", "c"), ("a", "d")]
        with pytest.raises(DrawInfeasible, match="nobody"):
            solve(members, exclusions, rng=random.Random(0))

    def test_node_budget_fails_closed(self):
        with pytest.raises(DrawInfeasible) as excinfo:
            solve(["a", "b", "c"], [("a", "b")], rng=random.Random(0), shuffle_attempts=0, node_budget=0)
        assert excinfo.value.exhausted is True

    def test_past_deadline_fails_closed(self):
        # Eight mutually excluded members can only gift the other seven:
        # infeasible, but the search only proves it after thousands of nodes.
        blocked = [f"x{i}" for i in range(8)]
        others = [f"y{i}" for i in range(7)]
        exclusions = [(a, b) for i, a in enumerate(blocked) for b in blocked[i + 1 :]]
        with pytest.raises(DrawInfeasible) as excinfo:
            solve(
                blocked + others,
                exclusions,
                rng=random.Random(0),
                shuffle_attempts=0,
                deadline=time.monotonic() - 1,
            )
        assert excinfo.value.exhausted is True

    def test_fewer_than_two_members_is_rejected(self):
        with pytest.raises(ValueError):
            solve(["solo"])
        with pytest.raises(ValueError):
            solve(["twin", "twin"])
