"""Extracted facts contract."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt

from visa_advisor.utils.contracts import strip_nulls


class Purpose(str, Enum):
    """Travel purpose, the only mandatory fact."""

    STUDY = "study"
    WORK = "work"
    BUSINESS = "business"
    TOURISM = "tourism"
    IMMIGRATION = "immigration"


# Higher wins when the keyword hint and the model disagree
PURPOSE_PRIORITY: Dict[Purpose, int] = {
    Purpose.IMMIGRATION: 5,
    Purpose.STUDY: 4,
    Purpose.WORK: 3,
    Purpose.BUSINESS: 2,
    Purpose.TOURISM: 1,
}


class FactsModel(BaseModel):
    """Base for facts blocks: unknown keys are dropped, blanks are rejected."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, str_min_length=1)


class PersonalInfo(FactsModel):
    full_name: Optional[str] = None
    nationality: Optional[str] = None
    country_of_birth: Optional[str] = None
    date_of_birth: Optional[str] = None


class JobOfferDetails(FactsModel):
    position: Optional[str] = None
    industry: Optional[str] = None
    salary_usd_year: Optional[float] = Field(default=None, ge=0)
    employer_size: Optional[str] = None
    is_multinational: Optional[bool] = None


class ExtraordinaryEvidence(FactsModel):
    awards: Optional[List[str]] = None
    media_mentions: Optional[NonNegativeInt] = None
    conference_speaking: Optional[bool] = None
    peer_review_jury: Optional[bool] = None
    original_contributions: Optional[str] = None


class NiwProngs(FactsModel):
    national_importance: Optional[str] = None
    well_positioned: Optional[str] = None
    benefit_outweighs_labor_cert: Optional[str] = None


class PermReadiness(FactsModel):
    occupation: Optional[str] = None
    degree_requirement: Optional[str] = None
    prevailing_wage_level: Optional[str] = None


class TreatyEligibility(FactsModel):
    e1: Optional[bool] = None
    e2: Optional[bool] = None


class ImmigrationHistory(FactsModel):
    overstay_or_violations: Optional[bool] = None
    prior_us_visas: Optional[List[str]] = None


class FamilyTies(FactsModel):
    immediate_relative_us_citizen: Optional[bool] = None
    relative_us_lpr: Optional[bool] = None
    relationship: Optional[str] = None


class Entrepreneurship(FactsModel):
    owns_business: Optional[bool] = None
    business_details: Optional[str] = None


class Signals(FactsModel):
    """Optional enrichment used by the classifier and question generator."""

    field_of_expertise: Optional[str] = None
    has_job_offer: Optional[bool] = None
    job_offer_details: Optional[JobOfferDetails] = None
    extraordinary_evidence: Optional[ExtraordinaryEvidence] = None
    niw_prongs: Optional[NiwProngs] = None
    perm_readiness: Optional[PermReadiness] = None
    chargeability_country: Optional[str] = None
    treaty_eligible: Optional[TreatyEligibility] = None
    treaty_country: Optional[str] = None
    investment_capacity_usd: Optional[float] = Field(default=None, ge=0)
    lawful_source_docs: Optional[bool] = None
    multinational_experience_years: Optional[NonNegativeInt] = None
    portfolio_links: Optional[List[str]] = None
    english_level: Optional[str] = None
    travel_history: Optional[List[str]] = None
    immigration_history: Optional[ImmigrationHistory] = None
    family_ties_us: Optional[FamilyTies] = None
    entrepreneurship: Optional[Entrepreneurship] = None
    has_i20: Optional[bool] = None
    has_funding: Optional[bool] = None


class Facts(FactsModel):
    """Structured facts extracted from an applicant narrative."""

    personal: Optional[PersonalInfo] = None
    purpose: Purpose
    education: Optional[str] = None
    work_experience_years: Optional[NonNegativeInt] = None
    has_us_sponsor: Optional[bool] = None
    signals: Optional[Signals] = None

    def to_document(self) -> Dict[str, Any]:
        """JSON document for persistence: unknown fields omitted, never null."""
        return strip_nulls(self.model_dump(mode="json", exclude_none=True))
