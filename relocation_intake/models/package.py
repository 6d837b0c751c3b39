"""Pricing package catalog entries and match results."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


ANY = "any"


class IncomeLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ANY = ANY


class ComplexityLevel(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    ANY = ANY


class FamilySize(str, Enum):
    INDIVIDUAL = "individual"
    COUPLE = "couple"
    FAMILY = "family"
    ANY = ANY


class UrgencyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ANY = ANY


class Service(str, Enum):
    """Service inclusion flags, named after the PricingPackage boolean fields."""

    VISA_SUPPORT = "visa_support"
    HOUSING_SEARCH = "housing_search"
    TAX_ADVICE = "tax_advice"
    EDUCATION_PLANNING = "education_planning"
    HEALTHCARE_GUIDANCE = "healthcare_guidance"
    WORK_PERMIT_HELP = "work_permit_help"


class PricingPackage(BaseModel):
    """A priced service bundle with matching characteristics.

    Attributes:
        id: Catalog identifier (e.g. "essentials")
        price: Package price in `currency`
        complexity_level: Situation complexity the package is built for
        target_income_level: Income band the package is aimed at
        family_size: Household tier the package is aimed at
        urgency_level: Timeline tier the package is aimed at
        includes_*: Service inclusion flags
        consultation_hours / follow_up_sessions / document_reviews: Package limits
        is_active: Inactive packages are never ranked
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    display_name: str = ""
    description: str = ""
    price: float = Field(ge=0)
    currency: str = "USD"

    target_income_level: IncomeLevel = IncomeLevel.ANY
    complexity_level: ComplexityLevel = ComplexityLevel.ANY
    family_size: FamilySize = FamilySize.ANY
    urgency_level: UrgencyLevel = UrgencyLevel.ANY
    destination_types: tuple[str, ...] = ()

    includes_visa_support: bool = False
    includes_housing_search: bool = False
    includes_tax_advice: bool = False
    includes_education_planning: bool = False
    includes_healthcare_guidance: bool = False
    includes_work_permit_help: bool = False

    consultation_hours: int = Field(default=0, ge=0)
    follow_up_sessions: int = Field(default=0, ge=0)
    document_reviews: int = Field(default=0, ge=0)

    is_active: bool = True
    sort_order: int = 0

    def includes(self, service: Service) -> bool:
        return bool(getattr(self, f"includes_{Service(service).value}"))


class ProfileDimensions(BaseModel):
    """Levels derived from a profile, compared against package targets."""

    model_config = ConfigDict(frozen=True)

    income_level: IncomeLevel
    complexity_level: ComplexityLevel
    family_size: FamilySize
    urgency_level: UrgencyLevel
    needed_services: tuple[Service, ...] = ()


class PackageMatch(BaseModel):
    """One ranked package with its score breakdown."""

    model_config = ConfigDict(frozen=True)

    package: PricingPackage
    score: float = Field(ge=0.0, le=1.0)
    dimension_scores: dict[str, float] = Field(default_factory=dict)
    missing_services: tuple[Service, ...] = ()
    reasons: tuple[str, ...] = ()


class MatchResult(BaseModel):
    """Ranked packages for one matching call. Not persisted."""

    model_config = ConfigDict(frozen=True)

    assessment_id: str
    dimensions: ProfileDimensions
    matches: tuple[PackageMatch, ...] = ()

    @property
    def best(self) -> Optional[PackageMatch]:
        return self.matches[0] if self.matches else None

    def ranked_ids(self) -> list[str]:
        return [m.package.id for m in self.matches]
