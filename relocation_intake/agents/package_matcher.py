"""Package Matching Engine.

Scores a completed profile against the pricing package catalog.

Each package is compared on four dimensions derived from the answers:

    income      (low / medium / high)        weight 0.30 by default
    complexity  (simple / moderate / complex) weight 0.30
    family size (individual / couple / family) weight 0.20
    urgency     (low / medium / high)        weight 0.20

A dimension contributes 1.0 on an exact match, 0.5 when the package targets
"any", 0.0 otherwise. A package that includes none of the services the
profile needs loses a fixed `service_gap_penalty`; partial coverage is not
penalized. Results are ordered by score (desc), price (asc), id (asc).
Weights, thresholds and keyword lists live in MatchingConfig.
"""

import re
from typing import Iterable, Optional, Sequence

from relocation_intake.errors import AssessmentIncomplete
from relocation_intake.models.assessment import Assessment, CategorizedProfile, IntakeAnswers, Topic
from relocation_intake.models.config import MatchingConfig
from relocation_intake.models.package import (
    ANY,
    ComplexityLevel,
    FamilySize,
    IncomeLevel,
    MatchResult,
    PackageMatch,
    PricingPackage,
    ProfileDimensions,
    Service,
    UrgencyLevel,
)
from relocation_intake.utils.logger import get_logger

TOPIC_SERVICES: dict[Topic, Service] = {
    Topic.IMMIGRATION: Service.VISA_SUPPORT,
    Topic.HOUSING: Service.HOUSING_SEARCH,
    Topic.TAX: Service.TAX_ADVICE,
    Topic.EDUCATION: Service.EDUCATION_PLANNING,
    Topic.HEALTHCARE: Service.HEALTHCARE_GUIDANCE,
    Topic.WORK: Service.WORK_PERMIT_HELP,
}

_AMOUNT_RE = re.compile(
    r"(?P<currency>[$€£])?\s*"
    r"(?P<number>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)\s*"
    r"(?P<suffix>k|m|thousand|million)?\b",
    re.IGNORECASE,
)
_YEAR_RE = re.compile(r"19\d\d|20\d\d|2100")
_MONTHLY_RE = re.compile(r"per month|/\s*month|a month|monthly|/mo\b", re.IGNORECASE)

_DURATION_RE = re.compile(
    r"\b(?P<number>\d+(?:\.\d+)?|an?|one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve)"
    r"(?:\s*(?:-|to)\s*(?P<upper>\d+(?:\.\d+)?))?\s*"
    r"(?P<unit>day|week|month|year)s?\b",
    re.IGNORECASE,
)
_WORD_NUMBERS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}
_UNIT_MONTHS = {"day": 1 / 30, "week": 12 / 52, "month": 1.0, "year": 12.0}

HIGH_URGENCY_KEYWORDS = (
    "asap", "as soon as possible", "urgent", "urgently", "immediately",
    "right away", "this month", "next month",
)
LOW_URGENCY_KEYWORDS = (
    "flexible", "no rush", "someday", "eventually", "not sure", "undecided",
    "next year", "no fixed",
)

FAMILY_KEYWORDS = (
    "kids", "kid", "children", "child", "son", "sons", "daughter", "daughters",
    "baby", "toddler", "teenager", "family", "parents", "dependents",
)
COUPLE_KEYWORDS = (
    "spouse", "partner", "wife", "husband", "girlfriend", "boyfriend", "fiance",
    "fiancee", "fiancé", "fiancée", "couple",
)
_FAMILY_OF_RE = re.compile(r"family of (\d+)", re.IGNORECASE)
_NEGATIONS = frozenset({"no", "not", "without", "zero"})


def _contains_any(text: str, keywords: Iterable[str]) -> list[str]:
    lowered = text.lower()
    return [
        k for k in keywords if re.search(rf"(?<!\w){re.escape(k.lower())}(?!\w)", lowered)
    ]


def _affirmed(text: str, keywords: Iterable[str]) -> list[str]:
    """Like _contains_any, but skips mentions right after "no" / "without" ("no kids")."""
    lowered = text.lower()
    hits = []
    for k in keywords:
        for match in re.finditer(rf"(?<!\w){re.escape(k.lower())}(?!\w)", lowered):
            preceding = re.findall(r"\w+", lowered[: match.start()])
            if not preceding or preceding[-1] not in _NEGATIONS:
                hits.append(k)
                break
    return hits


def extract_amounts(text: str) -> list[float]:
    """Money amounts in free text, annualized when the text talks per month.

    Bare numbers without a currency sign or k/m suffix are ignored below 1000
    ("2 kids", "6 months") and, unless the text talks per month, when they look
    like a year ("sold it in 2019").
    """
    monthly = bool(_MONTHLY_RE.search(text))
    amounts = []
    for match in _AMOUNT_RE.finditer(text):
        raw = match.group("number")
        number = float(raw.replace(",", ""))
        suffix = (match.group("suffix") or "").lower()
        if suffix in ("k", "thousand"):
            number *= 1_000
        elif suffix in ("m", "million"):
            number *= 1_000_000
        elif not match.group("currency") and (
            number < 1_000 or (not monthly and _YEAR_RE.fullmatch(raw))
        ):
            continue
        amounts.append(number)

    if amounts and monthly:
        amounts = [a * 12 for a in amounts]
    return amounts


def derive_income_level(
    income_answer: str, finance_topic: Optional[str], config: MatchingConfig
) -> IncomeLevel:
    text = " ".join(filter(None, [income_answer, finance_topic]))
    amounts = extract_amounts(income_answer) or extract_amounts(finance_topic or "")
    if amounts:
        amount = max(amounts)
        if amount < config.low_income_ceiling:
            return IncomeLevel.LOW
        if amount >= config.high_income_floor:
            return IncomeLevel.HIGH
        return IncomeLevel.MEDIUM
    if _contains_any(text, config.high_income_keywords):
        return IncomeLevel.HIGH
    if _contains_any(text, config.low_income_keywords):
        return IncomeLevel.LOW
    return IncomeLevel.MEDIUM


def derive_family_size(companions_answer: str, family_topic: Optional[str] = None) -> FamilySize:
    text = " ".join(filter(None, [companions_answer, family_topic]))

    family_of = _FAMILY_OF_RE.search(text)
    if family_of:
        size = int(family_of.group(1))
        if size >= 3:
            return FamilySize.FAMILY
        if size == 2:
            return FamilySize.COUPLE
        return FamilySize.INDIVIDUAL

    if _affirmed(text, FAMILY_KEYWORDS):
        return FamilySize.FAMILY
    if _affirmed(text, COUPLE_KEYWORDS):
        return FamilySize.COUPLE
    return FamilySize.INDIVIDUAL


def months_until(timing_answer: str) -> Optional[float]:
    """Largest horizon mentioned in the timing answer, in months."""
    horizons = []
    for match in _DURATION_RE.finditer(timing_answer):
        raw = match.group("upper") or match.group("number")
        number = _WORD_NUMBERS.get(raw.lower()) if not raw[0].isdigit() else float(raw)
        if number is None:
            continue
        horizons.append(number * _UNIT_MONTHS[match.group("unit").lower()])
    return max(horizons) if horizons else None


def derive_urgency(timing_answer: str, config: MatchingConfig) -> UrgencyLevel:
    if _contains_any(timing_answer, HIGH_URGENCY_KEYWORDS):
        return UrgencyLevel.HIGH

    months = months_until(timing_answer)
    if months is not None:
        if months <= config.high_urgency_max_months:
            return UrgencyLevel.HIGH
        if months <= config.medium_urgency_max_months:
            return UrgencyLevel.MEDIUM
        return UrgencyLevel.LOW

    if _contains_any(timing_answer, LOW_URGENCY_KEYWORDS):
        return UrgencyLevel.LOW
    return UrgencyLevel.MEDIUM


def complexity_points(
    profile: CategorizedProfile,
    answers: IntakeAnswers,
    unresolved: Iterable[Topic],
    config: MatchingConfig,
) -> int:
    """Accumulate complexity evidence from the profile and raw answers."""
    points = len(set(unresolved)) * config.unresolved_topic_points
    points += sum(1 for t in config.complex_topics if profile.is_resolved(t))

    answer_text = " ".join(answers.as_dict().values())
    profile_text = " ".join(v for v in profile.as_dict().values() if v)
    points += len(_contains_any(f"{answer_text} {profile_text}", config.complexity_keywords))

    if len(answer_text) > config.long_answer_chars:
        points += 1
    return points


def derive_complexity(points: int, config: MatchingConfig) -> ComplexityLevel:
    if points >= config.complex_complexity_points:
        return ComplexityLevel.COMPLEX
    if points >= config.moderate_complexity_points:
        return ComplexityLevel.MODERATE
    return ComplexityLevel.SIMPLE


def needed_services(
    profile: CategorizedProfile, not_applicable: Iterable[Topic] = ()
) -> tuple[Service, ...]:
    """Services implied by the topics the profile populates."""
    skipped = set(not_applicable)
    return tuple(
        service
        for topic, service in TOPIC_SERVICES.items()
        if profile.is_resolved(topic) and topic not in skipped
    )


def dimension_match(package_target: str, derived: str) -> float:
    if package_target == derived:
        return 1.0
    if package_target == ANY:
        return 0.5
    return 0.0


class PackageMatchingEngine:
    """Ranks pricing packages for a completed profile. Pure given its inputs."""

    def __init__(self, config: Optional[MatchingConfig] = None):
        self.config = config or MatchingConfig()

    def derive_dimensions(
        self,
        profile: CategorizedProfile,
        answers: IntakeAnswers,
        unresolved: Iterable[Topic] = (),
        not_applicable: Iterable[Topic] = (),
    ) -> ProfileDimensions:
        points = complexity_points(profile, answers, unresolved, self.config)
        return ProfileDimensions(
            income_level=derive_income_level(
                answers.income, profile.get(Topic.FINANCE), self.config
            ),
            complexity_level=derive_complexity(points, self.config),
            family_size=derive_family_size(answers.companions, profile.get(Topic.FAMILY)),
            urgency_level=derive_urgency(answers.timing, self.config),
            needed_services=needed_services(profile, not_applicable),
        )

    def score_package(
        self, package: PricingPackage, dimensions: ProfileDimensions
    ) -> PackageMatch:
        weights = self.config.weights
        comparisons = {
            "income": (weights.income, package.target_income_level, dimensions.income_level),
            "complexity": (
                weights.complexity,
                package.complexity_level,
                dimensions.complexity_level,
            ),
            "family": (weights.family, package.family_size, dimensions.family_size),
            "urgency": (weights.urgency, package.urgency_level, dimensions.urgency_level),
        }

        dimension_scores = {}
        reasons = []
        base = 0.0
        for name, (weight, target, derived) in comparisons.items():
            match = dimension_match(target.value, derived.value)
            dimension_scores[name] = match
            base += weight * match
            if match == 1.0:
                reasons.append(f"{name} matches ({derived.value})")
            elif match == 0.5:
                reasons.append(f"{name} covered by an 'any' package ({derived.value})")
            else:
                reasons.append(f"{name} mismatch: package {target.value}, profile {derived.value}")

        missing = tuple(s for s in dimensions.needed_services if not package.includes(s))
        for service in missing:
            reasons.append(f"missing needed service: {service.value}")

        uncovered = bool(missing) and len(missing) == len(dimensions.needed_services)
        if uncovered:
            reasons.append("package covers none of the needed services")
        score = base - (self.config.service_gap_penalty if uncovered else 0.0)
        score = round(min(1.0, max(0.0, score)), 6)

        return PackageMatch(
            package=package,
            score=score,
            dimension_scores=dimension_scores,
            missing_services=missing,
            reasons=tuple(reasons),
        )

    def rank(
        self,
        profile: CategorizedProfile,
        answers: IntakeAnswers,
        packages: Sequence[PricingPackage],
        unresolved: Iterable[Topic] = (),
        not_applicable: Iterable[Topic] = (),
        assessment_id: str = "",
    ) -> MatchResult:
        """
        Score and order active packages.

        Returns:
            MatchResult sorted by score desc, then price asc, then id asc
        """
        logger = get_logger(
            correlation_id=assessment_id or None, phase="matching", component="package_matcher"
        )
        dimensions = self.derive_dimensions(profile, answers, unresolved, not_applicable)

        scored = [self.score_package(p, dimensions) for p in packages if p.is_active]
        scored.sort(key=lambda m: (-m.score, m.package.price, m.package.id))

        logger.info(
            "Packages ranked",
            income_level=dimensions.income_level.value,
            complexity_level=dimensions.complexity_level.value,
            family_size=dimensions.family_size.value,
            urgency_level=dimensions.urgency_level.value,
            needed_services=[s.value for s in dimensions.needed_services],
            ranking=[(m.package.id, m.score) for m in scored],
        )
        return MatchResult(
            assessment_id=assessment_id, dimensions=dimensions, matches=tuple(scored)
        )

    def match_assessment(
        self, assessment: Assessment, packages: Sequence[PricingPackage]
    ) -> MatchResult:
        """
        Rank packages for a completed assessment.

        Raises:
            AssessmentIncomplete: If the assessment has not reached a terminal state
        """
        if not assessment.is_complete or assessment.profile is None:
            raise AssessmentIncomplete(assessment.id)
        return self.rank(
            assessment.profile,
            assessment.answers,
            packages,
            unresolved=assessment.unresolved_topics(),
            not_applicable=assessment.not_applicable,
            assessment_id=assessment.id,
        )
