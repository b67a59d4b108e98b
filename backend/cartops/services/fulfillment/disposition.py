"""
CARTOPS - Bottle Disposition Classifier

    > 50%     reuse
    25%-50%   complete (both bounds inclusive)
    < 25%     discard
"""

from cartops.models.bottles import Disposition


REUSE_THRESHOLD = 50
MIN_COMPLETION_THRESHOLD = 25
MAX_COMPLETION_THRESHOLD = 50
DISCARD_THRESHOLD = 25


class DispositionClassifier:
    """Maps a liquid-level percentage to a disposition."""

    def classify(self, percentage: int) -> Disposition:
        if percentage > REUSE_THRESHOLD:
            return Disposition.REUSE
        if MIN_COMPLETION_THRESHOLD <= percentage <= MAX_COMPLETION_THRESHOLD:
            return Disposition.COMPLETE
        return Disposition.DISCARD

    def in_completion_band(self, percentage: int) -> bool:
        return MIN_COMPLETION_THRESHOLD <= percentage <= MAX_COMPLETION_THRESHOLD

    def can_complete_together(self, first: int, second: int) -> bool:
        """Both in the completion band and together at least the reuse threshold."""
        return (
            self.in_completion_band(first)
            and self.in_completion_band(second)
            and first + second >= REUSE_THRESHOLD
        )


# Singleton instance
disposition_classifier = DispositionClassifier()
