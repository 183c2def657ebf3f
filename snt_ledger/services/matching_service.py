"""Payment-to-plot matching engine.

Pure scoring over an already loaded plot registry: no database access and no
side effects. Callers persist the returned MatchResult on the payment.

Scoring per plot (capped at 1.0):
    explicit marker equal to plot number ("участок 12", "уч. 12", "№12", "#12",
    "plot 12", "У-12")                                   0.6
    bare 1-4 digit number equal to plot number           0.3
    street word overlap                                  0.3
    owner name overlap (fraction of owner's words)       up to 0.4
    phone tail (last four digits)                        0.2

Example:
    >>> matcher = MatchingService()
    >>> result = matcher.match(plots, payer="Иванов И.И.", purpose="Членский взнос уч. 12")
    >>> result.match_status
    <MatchStatus.MATCHED: 'matched'>
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Protocol

from snt_ledger.config import settings
from snt_ledger.models.payment import MatchStatus

MARKER_RE = re.compile(
    r"(?:(?<!\w)(?:участок|участка|уч\.?|plot|у-)|№|#)\s*№?\s*"
    r"(\d{1,4})([a-zа-я](?![a-zа-я\d]))?(?!\d)"
)
BARE_NUMBER_RE = re.compile(r"(?<![\d.,])\b(\d{1,4})\b(?![.,]\d)")
WORD_RE = re.compile(r"[a-zа-я]{3,}")
DIGIT_RUN_RE = re.compile(r"\d{4,}")

STREET_STOPWORDS = {"улица", "линия", "переулок", "проезд", "аллея", "тупик", "проспект", "street"}

MARKER_SCORE = 0.6
BARE_NUMBER_SCORE = 0.3
STREET_SCORE = 0.3
OWNER_SCORE = 0.4
PHONE_SCORE = 0.2


class PlotLike(Protocol):
    id: int
    plot_number: str
    street: str | None
    owner_name: str | None
    phone: str | None
    is_archived: bool


@dataclass(frozen=True)
class MatchingPolicy:
    """Configurable thresholds (heuristic, not hard constants); field defaults mirror the settings."""

    match_threshold: float = 0.6
    ambiguous_threshold: float = 0.3
    payer_weight: float = 0.8

    @classmethod
    def from_settings(cls) -> "MatchingPolicy":
        """Policy from MATCH_THRESHOLD, AMBIGUOUS_THRESHOLD and PAYER_WEIGHT."""
        return cls(
            match_threshold=settings.match_threshold,
            ambiguous_threshold=settings.ambiguous_threshold,
            payer_weight=settings.payer_weight,
        )


@dataclass
class MatchResult:
    match_status: MatchStatus
    matched_plot_id: int | None = None
    candidates: list[int] = field(default_factory=list)
    confidence: float | None = None
    reason: str = "unmatched"


@dataclass
class TextTokens:
    """Plot-identifying tokens extracted from one free-text field."""

    markers: set[str] = field(default_factory=set)
    numbers: set[str] = field(default_factory=set)
    words: set[str] = field(default_factory=set)
    phone_tails: set[str] = field(default_factory=set)


def normalize(text: str | None) -> str:
    return (text or "").lower().replace("ё", "е")


def extract_tokens(text: str | None) -> TextTokens:
    """Extract markers, bare numbers, words and phone tails from text."""
    value = normalize(text)
    tokens = TextTokens()
    for match in MARKER_RE.finditer(value):
        tokens.markers.add(match.group(1).lstrip("0") + (match.group(2) or ""))
    for match in BARE_NUMBER_RE.finditer(value):
        tokens.numbers.add(match.group(1).lstrip("0"))
    tokens.words = set(WORD_RE.findall(value))
    tokens.phone_tails = {run[-4:] for run in DIGIT_RUN_RE.findall(value)}
    return tokens


def _plot_number(plot: PlotLike) -> str:
    return normalize(plot.plot_number).replace(" ", "").lstrip("0")


def score_plot(plot: PlotLike, tokens: TextTokens) -> tuple[float, list[str]]:
    """Score one plot against extracted tokens.

    Returns:
        (score capped at 1.0, names of the features that contributed)
    """
    score = 0.0
    features = []

    number = _plot_number(plot)
    if number and number in tokens.markers:
        score += MARKER_SCORE
        features.append("plot_number")
    elif number and number in tokens.numbers:
        score += BARE_NUMBER_SCORE
        features.append("plot_number")

    street_words = {w for w in WORD_RE.findall(normalize(plot.street))} - STREET_STOPWORDS
    if street_words and street_words & tokens.words:
        score += STREET_SCORE
        features.append("street")

    owner_words = set(WORD_RE.findall(normalize(plot.owner_name)))
    if owner_words:
        overlap = len(owner_words & tokens.words) / len(owner_words)
        if overlap > 0:
            score += OWNER_SCORE * overlap
            features.append("owner_name")

    phone_digits = re.sub(r"\D", "", plot.phone or "")
    if len(phone_digits) >= 4 and phone_digits[-4:] in tokens.phone_tails:
        score += PHONE_SCORE
        features.append("phone_last4")

    return round(min(score, 1.0), 4), features


class MatchingService:
    """Proposes candidate plots for a payment and assigns a match status."""

    def __init__(self, policy: MatchingPolicy | None = None):
        self.policy = policy or MatchingPolicy.from_settings()

    def _score_all(self, plots: list[PlotLike], text: str | None, weight: float = 1.0) -> dict[int, tuple[float, list[str]]]:
        tokens = extract_tokens(text)
        scores = {}
        for plot in plots:
            score, features = score_plot(plot, tokens)
            if score > 0:
                scores[plot.id] = (round(score * weight, 4), features)
        return scores

    def match(
        self,
        plots: Iterable[PlotLike],
        payer: str | None = None,
        purpose: str | None = None,
        amount: Decimal | None = None,
    ) -> MatchResult:
        """Match a payment against the plot registry.

        Purpose is scanned first. Payer text is consulted only when no plot
        reaches the ambiguous threshold from the purpose, and its scores are
        weighted down by payer_weight. Archived plots are never candidates.
        The amount is accepted for interface completeness and does not
        influence scoring.
        """
        policy = self.policy
        registry = [p for p in plots if not p.is_archived]

        scores = self._score_all(registry, purpose)
        source = "purpose"
        if not any(score >= policy.ambiguous_threshold for score, _ in scores.values()):
            payer_scores = self._score_all(registry, payer, policy.payer_weight)
            if any(score >= policy.ambiguous_threshold for score, _ in payer_scores.values()):
                source = "payer"
                for plot_id, (score, features) in payer_scores.items():
                    if score > scores.get(plot_id, (0.0, []))[0]:
                        scores[plot_id] = (score, features)

        # Rank by score descending, ties by plot id ascending
        ranked = sorted(scores.items(), key=lambda item: (-item[1][0], item[0]))
        strong = [item for item in ranked if item[1][0] >= policy.match_threshold]
        weak = [item for item in ranked if item[1][0] >= policy.ambiguous_threshold]
        candidates = [plot_id for plot_id, _ in weak]

        if len(strong) == 1:
            plot_id, (score, features) = strong[0]
            if source == "payer":
                reason = "payer_only"
            else:
                reason = features[0] if len(features) == 1 else "mixed"
            return MatchResult(
                match_status=MatchStatus.MATCHED,
                matched_plot_id=plot_id,
                candidates=candidates,
                confidence=score,
                reason=reason,
            )

        if len(strong) >= 2 or len(weak) >= 2:
            return MatchResult(
                match_status=MatchStatus.AMBIGUOUS,
                candidates=candidates,
                confidence=ranked[0][1][0],
                reason="ambiguous",
            )

        if weak:
            return MatchResult(
                match_status=MatchStatus.UNMATCHED,
                candidates=candidates,
                confidence=weak[0][1][0],
                reason="low_confidence",
            )

        return MatchResult(match_status=MatchStatus.UNMATCHED)


__all__ = [
    "MatchingService",
    "MatchingPolicy",
    "MatchResult",
    "TextTokens",
    "extract_tokens",
    "score_plot",
]
