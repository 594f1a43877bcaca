"""Additive provider scoring, ranking and tabular views of the results."""
import logging
import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from mediconnect.data.normalization import format_phone_number
from mediconnect.data.reference import SpecialtyCatalog, load_specialty_catalog
from mediconnect.models import ProviderRecord, ScoredCandidate, SearchCriteria, SpecialtyAnalysis, Urgency
from mediconnect.utils.addressing import normalize_state, resolve_state
from mediconnect.utils.filtering import requested_specialties
from mediconnect.utils.geo import calculate_distances, estimate_travel_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringWeights:
    """Points per rule. Every rule is independent; a candidate's score is the plain sum."""

    primary_specialty: int = 30
    secondary_specialty: int = 20
    experience_high: int = 15
    experience_good: int = 10
    experience_standard: int = 5
    experience_high_years: int = 15
    experience_good_years: int = 10
    rating_excellent: int = 15
    rating_good: int = 10
    rating_standard: int = 5
    rating_excellent_min: float = 4.8
    rating_good_min: float = 4.5
    condition: int = 20
    quick_availability: int = 10
    quick_availability_days: int = 3
    same_state: int = 8
    language: int = 7
    telemedicine: int = 5
    # Reference "maximum plausible score" used for the percentage, not a cap.
    max_plausible_score: int = 110


DEFAULT_WEIGHTS = ScoringWeights()

_DIGITS_RE = re.compile(r"\d+")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def match_percentage(score: int, weights: ScoringWeights = DEFAULT_WEIGHTS) -> int:
    if weights.max_plausible_score <= 0:
        return 0
    return max(0, min(100, round_half_up(score / weights.max_plausible_score * 100)))


def parse_availability_days(availability: Optional[str]) -> Optional[int]:
    """Days until the next opening from text like "Next 3 days", "Same day" or "Tomorrow"."""
    text = (availability or "").strip().lower()
    if not text:
        return None
    if "same day" in text or "today" in text:
        return 0
    if "next day" in text or "tomorrow" in text:
        return 1
    if "next week" in text:
        return 7
    found = _DIGITS_RE.search(text)
    return int(found.group()) if found else None


def _contains(values: Iterable[str], wanted: str) -> bool:
    wanted = wanted.strip().lower()
    return bool(wanted) and any(v.strip().lower() == wanted for v in values)


def _score_record(
    record: ProviderRecord,
    criteria: SearchCriteria,
    primary: Optional[str],
    secondary: Sequence[str],
    requested: Sequence[str],
    urgency: Urgency,
    requested_state: Optional[str],
    catalog: SpecialtyCatalog,
    weights: ScoringWeights,
) -> Tuple[int, List[str]]:
    score = 0
    factors: List[str] = []

    if primary and catalog.matches_exactly(record.primary_specialty, primary):
        score += weights.primary_specialty
        factors.append(f"Primary specialty match: +{weights.primary_specialty}")

    secondary_hit = any(catalog.matches(record.secondary_specialty, s) for s in requested) or any(
        catalog.matches(record.primary_specialty, s) for s in secondary
    )
    if secondary_hit:
        score += weights.secondary_specialty
        factors.append(f"Secondary specialty match: +{weights.secondary_specialty}")

    if record.experience_years is not None:
        if record.experience_years > weights.experience_high_years:
            score += weights.experience_high
            factors.append(
                f"High experience (>{weights.experience_high_years} years): +{weights.experience_high}"
            )
        elif record.experience_years > weights.experience_good_years:
            score += weights.experience_good
            factors.append(
                f"Good experience (>{weights.experience_good_years} years): +{weights.experience_good}"
            )
        else:
            score += weights.experience_standard
            factors.append(f"Standard experience: +{weights.experience_standard}")

    if record.rating is not None:
        if record.rating >= weights.rating_excellent_min:
            score += weights.rating_excellent
            factors.append(f"Excellent rating (>={weights.rating_excellent_min}): +{weights.rating_excellent}")
        elif record.rating >= weights.rating_good_min:
            score += weights.rating_good
            factors.append(f"Good rating (>={weights.rating_good_min}): +{weights.rating_good}")
        else:
            score += weights.rating_standard
            factors.append(f"Average rating: +{weights.rating_standard}")

    symptoms = (criteria.symptoms or "").lower()
    condition_hit = (criteria.condition and _contains(record.conditions, criteria.condition)) or any(
        c.strip() and c.strip().lower() in symptoms for c in record.conditions
    )
    if condition_hit:
        score += weights.condition
        factors.append(f"Condition-specific expertise: +{weights.condition}")

    if urgency in (Urgency.URGENT, Urgency.EMERGENCY):
        days = parse_availability_days(record.availability)
        if days is not None and days <= weights.quick_availability_days:
            score += weights.quick_availability
            factors.append(f"Quick availability for urgent case: +{weights.quick_availability}")

    if requested_state and normalize_state(record.state) == requested_state:
        score += weights.same_state
        factors.append(f"Location compatibility: +{weights.same_state}")

    if criteria.language_preferences and any(
        _contains(record.languages, lang) for lang in criteria.language_preferences
    ):
        score += weights.language
        factors.append(f"Language preference match: +{weights.language}")

    if criteria.telemedicine_preferred and record.telemedicine:
        score += weights.telemedicine
        factors.append(f"Telemedicine available: +{weights.telemedicine}")

    return score, factors


def _rank_key(candidate: ScoredCandidate):
    rating = candidate.rating
    return (-candidate.match_score, rating is None, -(rating or 0.0), candidate.name.casefold(), candidate.name)


def score_candidates(
    records: Sequence[ProviderRecord],
    criteria: SearchCriteria,
    analysis: Optional[SpecialtyAnalysis] = None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    catalog: Optional[SpecialtyCatalog] = None,
) -> List[ScoredCandidate]:
    """Score and rank providers.

    Sorted by score descending, then rating descending (unknown ratings last),
    then name ascending. Distances and travel times are attached when the
    criteria carry user coordinates and the provider has coordinates.

    Args:
        records: Providers to score, usually the output of ``filter_candidates``.
        criteria: Search input.
        analysis: Specialty analysis. Without one the requested specialties
            (hint first, then keyword-inferred) stand in for it.
        weights: Rule weights.
        catalog: Keyword table used for specialty matching.

    Returns:
        list[ScoredCandidate]: Ranked candidates; empty for empty input.
    """
    if not records:
        return []

    catalog = catalog or load_specialty_catalog()
    requested = requested_specialties(criteria, analysis, catalog)
    if analysis is not None:
        primary = analysis.primary_specialty or (requested[0] if requested else None)
        secondary = [s for s in analysis.secondary_specialties if s]
        urgency = analysis.urgency if analysis.urgency != Urgency.ROUTINE else criteria.urgency
    else:
        primary = requested[0] if requested else None
        secondary = requested[1:]
        urgency = criteria.urgency
    requested_state = resolve_state(criteria.location)

    distances = [None] * len(records)
    if criteria.user_coordinates is not None:
        distances = calculate_distances(criteria.user_coordinates, [r.coordinates for r in records])

    candidates = []
    for record, distance in zip(records, distances):
        score, factors = _score_record(
            record, criteria, primary, secondary, requested, urgency, requested_state, catalog, weights
        )
        travel_minutes = estimate_travel_time(distance.km, criteria.travel_mode).minutes if distance else None
        candidates.append(
            ScoredCandidate(
                provider=record,
                match_score=score,
                match_percentage=match_percentage(score, weights),
                scoring_factors=tuple(factors),
                distance=distance,
                travel_time_minutes=travel_minutes,
            )
        )

    candidates.sort(key=_rank_key)
    logger.debug(f"Scored {len(candidates)} providers; top score {candidates[0].match_score}")
    return candidates


_CANDIDATE_COLUMNS = [
    "Rank",
    "Name",
    "Credentials",
    "Specialty",
    "Secondary Specialty",
    "City",
    "State",
    "Phone",
    "Match Score",
    "Match %",
    "Rating",
    "Distance (km)",
    "Travel Time (min)",
    "Source",
    "Scoring Factors",
]


def candidates_to_dataframe(candidates: Sequence[ScoredCandidate]) -> pd.DataFrame:
    """Display table for ranked candidates, one row per candidate in rank order."""
    rows = []
    for rank, c in enumerate(candidates, start=1):
        p = c.provider
        rows.append(
            {
                "Rank": rank,
                "Name": p.name,
                "Credentials": p.credentials,
                "Specialty": p.primary_specialty,
                "Secondary Specialty": p.secondary_specialty or "",
                "City": p.city,
                "State": p.state,
                "Phone": format_phone_number(p.phone) or "",
                "Match Score": c.match_score,
                "Match %": c.match_percentage,
                "Rating": p.rating,
                "Distance (km)": c.distance.km if c.distance else None,
                "Travel Time (min)": c.travel_time_minutes,
                "Source": p.source.value,
                "Scoring Factors": "; ".join(c.scoring_factors),
            }
        )
    return pd.DataFrame(rows, columns=_CANDIDATE_COLUMNS)


def records_to_dataframe(records: Iterable[ProviderRecord]) -> pd.DataFrame:
    rows = [
        {
            "ID": r.id,
            "Full Name": r.name,
            "Credentials": r.credentials,
            "Specialty": r.primary_specialty,
            "Secondary Specialty": r.secondary_specialty,
            "Address": r.address,
            "City": r.city,
            "State": r.state,
            "Zip": r.postal_code,
            "Phone": r.phone,
            "Latitude": r.coordinates.lat if r.coordinates else None,
            "Longitude": r.coordinates.lng if r.coordinates else None,
            "Experience (Years)": r.experience_years,
            "Rating": r.rating,
            "Telemedicine": r.telemedicine,
            "Source": r.source.value,
        }
        for r in records
    ]
    df = pd.DataFrame(rows)
    if not df.empty:
        df["Latitude"] = pd.to_numeric(df["Latitude"], errors="coerce")
        df["Longitude"] = pd.to_numeric(df["Longitude"], errors="coerce")
    return df


def summarize_provider_data(df: pd.DataFrame) -> Tuple[bool, str]:
    """Data quality check for a ``records_to_dataframe`` table; returns (is_valid, markdown message)."""
    if df.empty:
        return False, "❌ **Error**: No provider data available. Please check the data source."

    issues = []
    info = []

    required_cols = ["Full Name", "Specialty", "State"]
    missing_cols = [col for col in required_cols if col not in df.columns]
    if missing_cols:
        issues.append(f"Missing required columns: {', '.join(missing_cols)}")

    if "Full Name" in df.columns:
        duplicate_names = df["Full Name"].duplicated().sum()
        if duplicate_names > 0:
            info.append(f"{duplicate_names} providers share a name with another provider")

    if "Specialty" in df.columns:
        missing_specialty = (df["Specialty"].fillna("").str.strip() == "").sum()
        if missing_specialty > 0:
            issues.append(f"{missing_specialty} providers have no primary specialty")
        info.append(f"Distinct specialties: {df['Specialty'].nunique()}")

    if "Latitude" in df.columns and "Longitude" in df.columns:
        missing_coords = (df["Latitude"].isna() | df["Longitude"].isna()).sum()
        if missing_coords > 0:
            info.append(f"{missing_coords} providers missing geographic coordinates (may need geocoding)")

    if "Experience (Years)" in df.columns and df["Experience (Years)"].notna().any():
        info.append(f"Average experience: {df['Experience (Years)'].mean():.1f} years")

    if "Source" in df.columns:
        counts = df["Source"].value_counts()
        info.append("Sources: " + ", ".join(f"{src} ({n})" for src, n in counts.items()))

    info.append(f"Total providers: {len(df)}")

    message_parts = []
    if issues:
        message_parts.append("⚠️ **Data Quality Issues**: " + "; ".join(issues))
    if info:
        message_parts.append("ℹ️ **Data Summary**: " + "; ".join(info))

    return len(issues) == 0, "\n\n".join(message_parts)
