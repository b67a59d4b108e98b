"""
CARTOPS - Disposition Classifier Tests
"""

import pytest

from cartops.models.bottles import Disposition
from cartops.services.fulfillment.disposition import DispositionClassifier


classifier = DispositionClassifier()


class TestClassify:
    """Threshold boundaries."""

    @pytest.mark.parametrize("percentage,expected", [
        (100, Disposition.REUSE),
        (51, Disposition.REUSE),
        (50, Disposition.COMPLETE),
        (30, Disposition.COMPLETE),
        (25, Disposition.COMPLETE),
        (24, Disposition.DISCARD),
        (0, Disposition.DISCARD),
    ])
    def test_boundaries(self, percentage, expected):
        assert classifier.classify(percentage) == expected


class TestCompleteTogether:
    """Both in the completion band and the sum clears reuse."""

    def test_two_at_30(self):
        assert classifier.can_complete_together(30, 30)

    def test_two_at_25_exactly_reach_reuse(self):
        assert classifier.can_complete_together(25, 25)

    def test_two_at_10(self):
        assert not classifier.can_complete_together(10, 10)

    def test_one_outside_band(self):
        assert not classifier.can_complete_together(50, 20)
        assert not classifier.can_complete_together(60, 30)
