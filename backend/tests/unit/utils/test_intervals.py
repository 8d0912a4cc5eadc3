# backend/tests/unit/utils/test_intervals.py
"""Half-open interval algebra, exercised with plain integers (minutes)."""

from booking_engine.utils.intervals import Interval, contains, merge, normalize, overlapping, subtract


class TestNormalize:
    def test_drops_empty_and_inverted_ranges(self):
        assert normalize([Interval(5, 5), Interval(9, 3), Interval(1, 2)]) == [Interval(1, 2)]

    def test_sorts_by_start_then_end(self):
        assert normalize([Interval(4, 6), Interval(1, 3), Interval(1, 2)]) == [
            Interval(1, 2),
            Interval(1, 3),
            Interval(4, 6),
        ]


class TestMerge:
    def test_empty_input(self):
        assert merge([]) == []

    def test_overlapping_ranges_coalesce(self):
        assert merge([Interval(540, 660), Interval(600, 720)]) == [Interval(540, 720)]

    def test_touching_ranges_coalesce(self):
        assert merge([Interval(540, 600), Interval(600, 660)]) == [Interval(540, 660)]

    def test_gap_keeps_ranges_apart(self):
        assert merge([Interval(540, 600), Interval(601, 660)]) == [
            Interval(540, 600),
            Interval(601, 660),
        ]

    def test_contained_range_is_absorbed(self):
        assert merge([Interval(0, 100), Interval(10, 20)]) == [Interval(0, 100)]

    def test_does_not_mutate_input(self):
        source = [Interval(3, 4), Interval(1, 2)]
        merge(source)
        assert source == [Interval(3, 4), Interval(1, 2)]


class TestSubtract:
    def test_cut_in_the_middle_splits(self):
        assert subtract([Interval(540, 720)], [Interval(600, 660)]) == [
            Interval(540, 600),
            Interval(660, 720),
        ]

    def test_cut_covering_everything_leaves_nothing(self):
        assert subtract([Interval(540, 600)], [Interval(500, 700)]) == []

    def test_adjacent_cut_removes_nothing(self):
        assert subtract([Interval(540, 600)], [Interval(600, 660)]) == [Interval(540, 600)]

    def test_trims_edges(self):
        assert subtract([Interval(540, 720)], [Interval(500, 560), Interval(700, 800)]) == [
            Interval(560, 700)
        ]

    def test_multiple_cuts_across_multiple_bases(self):
        result = subtract(
            [Interval(0, 10), Interval(20, 30)],
            [Interval(2, 4), Interval(8, 22), Interval(25, 26)],
        )
        assert result == [
            Interval(0, 2),
            Interval(4, 8),
            Interval(22, 25),
            Interval(26, 30),
        ]

    def test_no_cuts_returns_base(self):
        assert subtract([Interval(1, 2)], []) == [Interval(1, 2)]


class TestContains:
    def test_candidate_inside_one_block(self):
        assert contains([Interval(540, 720)], Interval(600, 660))

    def test_candidate_spanning_touching_blocks(self):
        assert contains([Interval(540, 600), Interval(600, 660)], Interval(570, 630))

    def test_candidate_across_a_gap(self):
        assert not contains([Interval(540, 600), Interval(610, 660)], Interval(570, 630))

    def test_exact_fit(self):
        assert contains([Interval(540, 600)], Interval(540, 600))


class TestOverlapping:
    def test_half_open_boundaries_do_not_overlap(self):
        blocks = [Interval(540, 600), Interval(660, 720)]
        assert overlapping(blocks, Interval(600, 660)) == []

    def test_returns_intersecting_blocks(self):
        blocks = [Interval(540, 600), Interval(660, 720)]
        assert overlapping(blocks, Interval(590, 670)) == blocks

    def test_interval_helpers(self):
        assert Interval(5, 5).is_empty
        assert not Interval(5, 6).is_empty
        assert Interval(0, 10).contains(Interval(0, 10))
        assert not Interval(0, 10).overlaps(Interval(10, 20))
