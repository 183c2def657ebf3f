"""Unit tests for payment-to-plot matching."""

from types import SimpleNamespace

import pytest

from snt_ledger.config import settings
from snt_ledger.models import MatchStatus
from snt_ledger.services.matching_service import (
    MatchingPolicy,
    MatchingService,
    extract_tokens,
    score_plot,
)


def make_plot(plot_id, number, street=None, owner_name=None, phone=None, archived=False):
    return SimpleNamespace(
        id=plot_id,
        plot_number=number,
        street=street,
        owner_name=owner_name,
        phone=phone,
        is_archived=archived,
    )


@pytest.fixture
def plots():
    return [
        make_plot(5, "12", street="Лесная", owner_name="Иванов Иван Иванович", phone="+7 916 000-11-22"),
        make_plot(3, "7", street="Линия 3", owner_name="Петров Пётр", phone="+7 916 123-45-67"),
        make_plot(9, "12А", owner_name="Сидорова Анна"),
    ]


@pytest.fixture
def matcher():
    return MatchingService()


class TestExtractTokens:
    """Test token extraction from free text."""

    def test_markers_in_several_spellings(self):
        """Test that уч., участок, № and # markers are recognized."""
        for text in ("Взнос уч. 12", "участок 12", "№12", "оплата #12", "Участок № 12"):
            assert "12" in extract_tokens(text).markers, text

    def test_marker_keeps_letter_suffix(self):
        """Test plot numbers with a letter suffix."""
        assert extract_tokens("Участок 12а").markers == {"12а"}

    def test_dates_are_not_bare_numbers(self):
        """Test that parts of a date are not taken for plot numbers."""
        tokens = extract_tokens("взнос за 01.2025")
        assert tokens.numbers == set()

    def test_phone_tail_from_long_digit_run(self):
        """Test that the last four digits of a long number are extracted."""
        assert "4567" in extract_tokens("тел 89161234567").phone_tails


class TestScorePlot:
    """Test per-plot scoring."""

    def test_marker_scores_higher_than_bare_number(self, plots):
        """Test marker 0.6 vs bare number 0.3."""
        marker_score, _ = score_plot(plots[0], extract_tokens("уч. 12"))
        bare_score, _ = score_plot(plots[0], extract_tokens("оплата 12"))
        assert marker_score == 0.6
        assert bare_score == 0.3

    def test_score_is_capped(self):
        """Test that combined features never exceed 1.0."""
        plot = make_plot(1, "12", street="Лесная", owner_name="Иванов", phone="89161234567")
        score, features = score_plot(plot, extract_tokens("уч. 12 Лесная Иванов 89161234567"))
        assert score == 1.0
        assert features == ["plot_number", "street", "owner_name", "phone_last4"]

    def test_street_stopwords_do_not_match(self, plots):
        """Test that generic words like 'линия' are not street evidence."""
        score, _ = score_plot(plots[1], extract_tokens("линия"))
        assert score == 0.0


class TestMatchingService:
    """Test match status decisions."""

    def test_single_strong_match(self, matcher, plots):
        """Test explicit plot marker gives a confident match."""
        result = matcher.match(plots, payer="Иванов И.И.", purpose="Членский взнос уч. 12")

        assert result.match_status == MatchStatus.MATCHED
        assert result.matched_plot_id == 5
        assert result.reason == "plot_number"
        assert result.confidence == 0.6
        assert result.candidates == [5]

    def test_letter_suffix_plot(self, matcher, plots):
        """Test that 'участок 12а' matches plot 12А, not plot 12."""
        result = matcher.match(plots, purpose="Участок 12а, целевой взнос")

        assert result.match_status == MatchStatus.MATCHED
        assert result.matched_plot_id == 9

    def test_two_weak_candidates_are_ambiguous(self, matcher, plots):
        """Test ties are ordered by plot id."""
        result = matcher.match(plots, purpose="оплата 12 и 7")

        assert result.match_status == MatchStatus.AMBIGUOUS
        assert result.matched_plot_id is None
        assert result.candidates == [3, 5]
        assert result.reason == "ambiguous"

    def test_two_strong_candidates_are_ambiguous(self, matcher, plots):
        """Test two explicit markers never pick a winner."""
        result = matcher.match(plots, purpose="уч. 12, уч. 7")

        assert result.match_status == MatchStatus.AMBIGUOUS
        assert result.candidates == [3, 5]

    def test_single_weak_candidate_is_low_confidence(self, matcher, plots):
        """Test one weak candidate stays unmatched."""
        result = matcher.match(plots, purpose="оплата 12")

        assert result.match_status == MatchStatus.UNMATCHED
        assert result.reason == "low_confidence"
        assert result.candidates == [5]
        assert result.confidence == 0.3

    def test_nothing_found(self, matcher, plots):
        """Test payment without any plot evidence."""
        result = matcher.match(plots, payer="ООО Ромашка", purpose="взнос")

        assert result.match_status == MatchStatus.UNMATCHED
        assert result.reason == "unmatched"
        assert result.candidates == []
        assert result.confidence is None

    def test_payer_only_match(self, matcher, plots):
        """Test payer text is used when purpose has no evidence, with reduced weight."""
        result = matcher.match(plots, payer="Петров Петр, уч. 7, тел. 89161234567", purpose="Взнос")

        assert result.match_status == MatchStatus.MATCHED
        assert result.matched_plot_id == 3
        assert result.reason == "payer_only"
        # score capped at 1.0, then weighted by 0.8
        assert result.confidence == pytest.approx(0.8)

    def test_purpose_wins_over_payer(self, matcher, plots):
        """Test payer is not consulted when purpose already names a plot."""
        result = matcher.match(plots, payer="Иванов Иван Иванович", purpose="уч. 7")

        assert result.matched_plot_id == 3

    def test_archived_plots_are_never_candidates(self, matcher):
        """Test archived plots are excluded."""
        plots = [make_plot(1, "12", archived=True), make_plot(2, "14")]
        result = matcher.match(plots, purpose="уч. 12")

        assert result.match_status == MatchStatus.UNMATCHED
        assert result.candidates == []

    def test_date_does_not_match_plot_one(self, matcher):
        """Test that a month like 01.2025 does not point at plot 1."""
        result = matcher.match([make_plot(1, "1")], purpose="взнос за 01.2025")

        assert result.match_status == MatchStatus.UNMATCHED

    def test_custom_policy_thresholds(self, plots):
        """Test thresholds come from the policy."""
        matcher = MatchingService(MatchingPolicy(match_threshold=0.3, ambiguous_threshold=0.2))
        result = matcher.match(plots, purpose="оплата 12")

        assert result.match_status == MatchStatus.MATCHED
        assert result.matched_plot_id == 5

    def test_default_policy_follows_settings(self, plots, monkeypatch):
        """Test MATCH_THRESHOLD and friends reach a matcher built without a policy."""
        monkeypatch.setattr(settings, "match_threshold", 0.95)
        monkeypatch.setattr(settings, "payer_weight", 0.5)

        matcher = MatchingService()
        result = matcher.match(plots, purpose="Членский взнос уч. 7")

        assert matcher.policy == MatchingPolicy(
            match_threshold=0.95, ambiguous_threshold=0.3, payer_weight=0.5
        )
        assert result.match_status == MatchStatus.UNMATCHED
        assert result.reason == "low_confidence"
        assert result.candidates == [3]
