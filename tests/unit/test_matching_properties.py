"""Property tests for match status around the policy thresholds."""

from types import SimpleNamespace

from hypothesis import given, settings
from hypothesis import strategies as st

from snt_ledger.models import MatchStatus
from snt_ledger.services.matching_service import MatchingPolicy, MatchingService, extract_tokens, score_plot

FRAGMENTS = [
    "уч. 12",
    "оплата 12",
    "ул. Лесная",
    "Иванов Иван Иванович",
    "Иванов",
    "тел 89161234567",
    "членский взнос",
    "за 01.2025",
]

purposes = st.lists(st.sampled_from(FRAGMENTS), max_size=4).map(" ".join)
# Exact feature scores are included so thresholds land on the boundaries
threshold = st.one_of(
    st.sampled_from([0.1333, 0.2, 0.3, 0.4, 0.6, 0.9, 1.0]),
    st.floats(min_value=0.05, max_value=1.0),
)
policies = st.lists(threshold, min_size=2, max_size=2).map(
    lambda pair: MatchingPolicy(match_threshold=max(pair), ambiguous_threshold=min(pair))
)


def make_plot(plot_id, number="12"):
    return SimpleNamespace(
        id=plot_id,
        plot_number=number,
        street="Лесная",
        owner_name="Иванов Иван Иванович",
        phone="+7 916 123-45-67",
        is_archived=False,
    )


class TestThresholdBoundaries:
    """Test the status each score receives relative to the thresholds."""

    @given(purpose=purposes, policy=policies)
    @settings(max_examples=300)
    def test_single_plot_status_follows_score(self, purpose, policy):
        plot = make_plot(5)
        score, _ = score_plot(plot, extract_tokens(purpose))

        result = MatchingService(policy).match([plot], purpose=purpose)

        if score > 0 and score >= policy.match_threshold:
            assert result.match_status == MatchStatus.MATCHED
            assert result.matched_plot_id == 5
            assert result.confidence == score
        elif score > 0 and score >= policy.ambiguous_threshold:
            assert result.match_status == MatchStatus.UNMATCHED
            assert result.reason == "low_confidence"
            assert result.candidates == [5]
        else:
            assert result.match_status == MatchStatus.UNMATCHED
            assert result.candidates == []

    @given(purpose=purposes, policy=policies)
    @settings(max_examples=300)
    def test_tied_plots_are_never_matched(self, purpose, policy):
        """Two plots scoring the same are ambiguous above the lower threshold, unmatched below it."""
        plots = [make_plot(5, "40"), make_plot(9, "41")]
        score, _ = score_plot(plots[0], extract_tokens(purpose))

        result = MatchingService(policy).match(plots, purpose=purpose)

        assert result.match_status != MatchStatus.MATCHED
        if score > 0 and score >= policy.ambiguous_threshold:
            assert result.match_status == MatchStatus.AMBIGUOUS
            assert result.candidates == [5, 9]
        else:
            assert result.match_status == MatchStatus.UNMATCHED

    @given(purpose=purposes, policy=policies, stricter=threshold)
    @settings(max_examples=300)
    def test_raising_match_threshold_never_creates_a_match(self, purpose, policy, stricter):
        plot = make_plot(5)
        raised = MatchingPolicy(
            match_threshold=max(policy.match_threshold, stricter),
            ambiguous_threshold=policy.ambiguous_threshold,
        )

        loose = MatchingService(policy).match([plot], purpose=purpose)
        strict = MatchingService(raised).match([plot], purpose=purpose)

        if strict.match_status == MatchStatus.MATCHED:
            assert loose.match_status == MatchStatus.MATCHED
            assert loose.matched_plot_id == strict.matched_plot_id
