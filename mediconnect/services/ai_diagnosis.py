"""
AI symptom analysis backed by Google Generative AI.

Two operations, each a ``ResilientFetcher`` over the configured model list
(one strategy per model, tried in order):

* ``diagnose`` returns a Markdown clinical analysis. When every model fails,
  the key is missing, or calls come faster than the debounce window, the
  report is built from the bundled medical knowledge base instead.
* ``analyze_specialties`` asks for a JSON object describing which specialties
  fit the symptoms. The fallback is the keyword-table analysis.

Output is educational decision support, not a diagnosis.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional

import google.generativeai as genai

from mediconnect.data.reference import SpecialtyCatalog, load_knowledge_base, load_specialty_catalog
from mediconnect.models import ProviderSource, SpecialtyAnalysis, Urgency
from mediconnect.utils.config import get_api_config, is_valid_api_key
from mediconnect.utils.resilience import FetchOutcome, ResilientFetcher, Strategy

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_MODEL = "enhanced-medical-knowledge-base"
NOT_CONFIGURED_REASON = "AI service not configured"

SYSTEM_PROMPT = """You are a clinical decision support assistant for licensed clinicians.
Structure every answer in Markdown with these sections:
## Patient Presentation
## Differential Diagnosis (High Priority - Cannot Miss / Moderate Priority / Lower Priority)
## Emergency Red Flags
## Diagnostic Approach
## Specialist Referral (Primary and Secondary specialty with urgency)
## Clinical Pearls & Management
Prioritize life-threatening conditions and keep recommendations evidence-based.
End with a note that the analysis must be verified through clinical evaluation."""

SPECIALTY_PROMPT = """As a medical specialist matching AI, analyze the following patient information \
and recommend the most appropriate medical specialties:

Patient Symptoms: {symptoms}
Known Condition: {condition}
Age: {age}
Gender: {gender}

Respond with JSON only:
{{
  "primarySpecialty": "specialty name",
  "secondarySpecialties": ["specialty1", "specialty2"],
  "confidence": "high/medium/low",
  "reasoning": "explanation",
  "urgency": "routine/urgent/emergency",
  "redFlags": ["flag1", "flag2"]
}}"""

_CONTEXT_LABELS = [
    ("age", "Age"),
    ("gender", "Gender"),
    ("medical_history", "Medical History"),
    ("duration", "Duration"),
    ("severity", "Severity"),
    ("medications", "Current Medications"),
    ("allergies", "Allergies"),
]

_FENCED_OBJECT_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


@dataclass(frozen=True)
class DiagnosisResult:
    report: str
    model: str
    used_fallback: bool
    symptoms: str
    patient_context: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Extract a JSON object from model output: whole text, fenced block, then first balanced ``{...}``."""
    response_text = (text or "").strip()
    if not response_text:
        return None

    # Strategy 1: parse full text as JSON
    try:
        parsed = json.loads(response_text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    # Strategy 2: fenced code block
    match = _FENCED_OBJECT_RE.search(response_text)
    if match:
        try:
            parsed = json.loads(match.group(1))
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    # Strategy 3: first balanced object
    start_idx = response_text.find("{")
    if start_idx != -1:
        depth = 0
        for i in range(start_idx, len(response_text)):
            if response_text[i] == "{":
                depth += 1
            elif response_text[i] == "}":
                depth -= 1
                if depth == 0:
                    try:
                        parsed = json.loads(response_text[start_idx : i + 1])
                    except json.JSONDecodeError:
                        return None
                    return parsed if isinstance(parsed, dict) else None

    logger.debug(f"No JSON object in model output: {response_text[:200]}")
    return None


def _as_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(v) for v in (value or []) if str(v).strip()]


def analysis_from_mapping(data: Dict[str, Any]) -> Optional[SpecialtyAnalysis]:
    """Build a SpecialtyAnalysis from the model's JSON (camelCase or snake_case keys)."""
    primary = data.get("primarySpecialty") or data.get("primary_specialty")
    if not primary or not str(primary).strip():
        return None
    primary = str(primary).strip()
    secondary_raw = data.get("secondarySpecialties", data.get("secondary_specialties"))
    secondary = [s for s in _as_list(secondary_raw) if s != primary]
    return SpecialtyAnalysis(
        primary_specialty=primary,
        secondary_specialties=secondary,
        confidence=str(data.get("confidence") or "medium").lower(),
        reasoning=str(data.get("reasoning") or ""),
        urgency=Urgency.parse(data.get("urgency")),
        red_flags=_as_list(data.get("redFlags", data.get("red_flags"))),
        source=ProviderSource.EXTERNAL_API,
    )


def select_knowledge_topic(symptoms: str, knowledge_base: Dict[str, Any]) -> str:
    text = (symptoms or "").lower()
    for topic, entry in knowledge_base["topics"].items():
        if any(keyword in text for keyword in entry.get("keywords", [])):
            return topic
    return knowledge_base["default_topic"]


def format_patient_context(patient_context: Optional[Dict[str, Any]]) -> List[str]:
    context = patient_context or {}
    return [f"{label}: {context[key]}" for key, label in _CONTEXT_LABELS if context.get(key)]


def build_knowledge_base_report(
    symptoms: str, patient_context: Optional[Dict[str, Any]], knowledge_base: Dict[str, Any]
) -> str:
    """Markdown analysis from the static knowledge base, used whenever the AI models cannot answer."""
    knowledge = knowledge_base["topics"][select_knowledge_topic(symptoms, knowledge_base)]
    context = format_patient_context(patient_context)
    differential = knowledge["differential"]

    lines = [f"# 🩺 Clinical Analysis: {symptoms}", ""]
    lines += ["*Note: AI service temporarily unavailable. Using enhanced medical knowledge base.*", ""]
    lines.append("## 📋 Patient Presentation")
    lines.append(f"- **Chief Complaint:** {symptoms}")
    if context:
        lines.append(f"- **Patient Context:** {', '.join(context)}")
    lines += ["", "## 🔍 Differential Diagnosis", "### 🚨 High Priority - Cannot Miss"]
    lines += [f"• {dx}" for dx in differential[0:2]]
    lines += ["", "### ⚠️ Moderate Priority"]
    lines += [f"• {dx}" for dx in differential[2:4]]
    lines += ["", "### 💚 Lower Priority"]
    lines += [f"• {dx}" for dx in differential[4:6]]
    lines += ["", "## 🚨 Emergency Red Flags"]
    lines += [f"• {flag}" for flag in knowledge["red_flags"]]
    lines += ["", "## 💡 Diagnostic Approach", "### 🎯 Immediate Workup"]
    lines += [f"- {test}" for test in knowledge["workup"]]
    lines += ["", "## 👥 Specialist Referral", f"- **Primary:** {knowledge['specialists'][0]}"]
    if len(knowledge["specialists"]) > 1:
        lines.append(f"- **Secondary:** {knowledge['specialists'][1]}")
    lines += [
        "",
        "## 📝 Clinical Pearls",
        "• Always rule out life-threatening conditions first",
        "• Consider patient's risk factors and comorbidities",
        "• Time-sensitive conditions require immediate intervention",
        "",
        "---",
        "*💡 Educational Note: This analysis is based on a static medical knowledge base. "
        "Always verify through appropriate clinical evaluation and consult specialists.*",
    ]
    return "\n".join(lines)


class AIDiagnosisService:
    """Symptom analysis over a fallback chain of Gemini models.

    Args:
        config: AI config as returned by ``get_api_config('ai')``.
        catalog: Keyword table for the specialty-analysis fallback.
        knowledge_base: Knowledge base for the diagnosis fallback.
        model_factory: Callable returning an object with ``generate_content``
            for a model name. Defaults to ``genai.GenerativeModel``.
        clock: Monotonic clock for the debounce window.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        catalog: Optional[SpecialtyCatalog] = None,
        knowledge_base: Optional[Dict[str, Any]] = None,
        model_factory: Optional[Callable[[str], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config if config is not None else get_api_config("ai")
        self.catalog = catalog or load_specialty_catalog()
        self.knowledge_base = knowledge_base or load_knowledge_base()
        self.model_names: List[str] = list(self.config.get("models") or [])
        self.configured = is_valid_api_key(self.config.get("api_key")) and bool(self.model_names)
        self._models: Dict[str, Any] = {}

        if not self.configured:
            logger.warning("AI API key missing or invalid; symptom analysis will use the offline knowledge base")
        elif model_factory is None:
            genai.configure(api_key=self.config["api_key"])
        self._model_factory = model_factory or self._build_model

        debounce = self.config.get("request_debounce_seconds", 1.0)
        names = self.model_names if self.configured else []
        self._diagnosis = ResilientFetcher(
            "ai_diagnosis",
            [Strategy(name, partial(self._generate_report, name)) for name in names],
            self._knowledge_base_report,
            min_interval_seconds=debounce,
            clock=clock,
        )
        self._specialties = ResilientFetcher(
            "ai_specialty_analysis",
            [Strategy(name, partial(self._generate_analysis, name)) for name in names],
            self._keyword_analysis,
            is_valid=lambda analysis: analysis is not None and bool(analysis.primary_specialty),
            min_interval_seconds=debounce,
            clock=clock,
        )

    def _build_model(self, name: str):
        return genai.GenerativeModel(
            model_name=name,
            generation_config=genai.types.GenerationConfig(
                temperature=float(self.config.get("temperature", 0.3)),
                max_output_tokens=int(self.config.get("max_output_tokens", 2048)),
            ),
        )

    def _model(self, name: str):
        if name not in self._models:
            self._models[name] = self._model_factory(name)
        return self._models[name]

    def _generate_text(self, name: str, prompt: str) -> str:
        timeout = float(self.config.get("request_timeout", 10))
        response = self._model(name).generate_content(prompt, request_options={"timeout": timeout})
        return (getattr(response, "text", "") or "").strip()

    # Diagnosis

    def _generate_report(self, name: str, symptoms: str, patient_context: Dict[str, Any]) -> str:
        context = "\n".join(f"• {line}" for line in format_patient_context(patient_context)) or "• Not provided"
        prompt = (
            f"{SYSTEM_PROMPT}\n\nPATIENT PRESENTATION:\n\nCHIEF COMPLAINT: {symptoms}\n\n"
            f"PATIENT CONTEXT:\n{context}\n\n"
            "Please provide a comprehensive clinical analysis following the specified structure."
        )
        return self._generate_text(name, prompt)

    def _knowledge_base_report(self, symptoms: str, patient_context: Dict[str, Any]) -> str:
        return build_knowledge_base_report(symptoms, patient_context, self.knowledge_base)

    def diagnose(self, symptoms: str, patient_context: Optional[Dict[str, Any]] = None) -> DiagnosisResult:
        """Clinical analysis for ``symptoms``; never raises for model errors."""
        patient_context = dict(patient_context or {})
        if not self.configured:
            outcome = FetchOutcome(
                self._knowledge_base_report(symptoms, patient_context),
                ResilientFetcher.FALLBACK_STRATEGY,
                ProviderSource.STATIC_FALLBACK,
                reason=NOT_CONFIGURED_REASON,
            )
        else:
            outcome = self._diagnosis.run(symptoms, patient_context)

        return DiagnosisResult(
            report=outcome.payload,
            model=KNOWLEDGE_BASE_MODEL if outcome.used_fallback else outcome.strategy,
            used_fallback=outcome.used_fallback,
            symptoms=symptoms,
            patient_context=patient_context,
            error=outcome.reason,
        )

    # Specialty analysis

    def _generate_analysis(
        self, name: str, symptoms: str, condition: Optional[str], age: Optional[Any], gender: Optional[str]
    ) -> Optional[SpecialtyAnalysis]:
        prompt = SPECIALTY_PROMPT.format(
            symptoms=symptoms,
            condition=condition or "Not specified",
            age=age or "Not specified",
            gender=gender or "Not specified",
        )
        parsed = parse_json_object(self._generate_text(name, prompt))
        if parsed is None:
            logger.warning(f"Model {name} returned no parseable JSON for specialty analysis")
            return None
        return analysis_from_mapping(parsed)

    def _keyword_analysis(
        self, symptoms: str, condition: Optional[str] = None, age: Optional[Any] = None, gender: Optional[str] = None
    ) -> SpecialtyAnalysis:
        text = " ".join(part for part in (symptoms, condition) if part)
        return self.catalog.analyze(text)

    def analyze_specialties(
        self,
        symptoms: str,
        condition: Optional[str] = None,
        age: Optional[Any] = None,
        gender: Optional[str] = None,
    ) -> SpecialtyAnalysis:
        """Which specialties fit the symptoms; the keyword table answers when the models cannot."""
        if not self.configured:
            return self._keyword_analysis(symptoms, condition, age, gender)
        return self._specialties.run(symptoms, condition, age, gender).payload
