"""
Pydantic Models for the structured outputs of the AI pipelines.

Wire names follow the JSON schemas demanded from the providers
(``examenFisico``, ``differentialDiagnoses``, ...). Fields the provider left
out stay ``None``; display fallbacks are the client's concern.
"""

from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _as_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


# Graded labels; providers sometimes answer with a number instead (0.7, 3)
Label = Annotated[Optional[str], BeforeValidator(_as_text)]


class WireModel(BaseModel):
    """Base for provider payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Structured consultation (SOAP + case analysis) ---

class StructuredConsultation(WireModel):
    """Six-section consultation note"""
    chief_complaint: Optional[str] = Field(default=None, alias="subjetivo", description="Chief complaint and symptoms")
    history: Optional[str] = Field(default=None, alias="objetivo", description="History of present illness")
    physical_exam: Optional[str] = Field(default=None, alias="examenFisico", description="Physical exam findings")
    diagnostic_impression: Optional[str] = Field(default=None, alias="impresionDiagnostica", description="Diagnostic impression")
    plan: Optional[str] = Field(default=None, alias="plan", description="Treatment plan")
    case_analysis: Optional[str] = Field(default=None, alias="analisisDelCaso", description="Summary and clinical considerations")

    def merge_analysis(self, analysis: "SymptomAnalysis") -> "StructuredConsultation":
        """Returns a copy with the rendered analysis appended to the diagnostic impression."""
        return self.model_copy(update={
            "diagnostic_impression": _append_section(self.diagnostic_impression, analysis.render()),
        })

    def merge_plan(self, plan: "TreatmentPlan") -> "StructuredConsultation":
        """Returns a copy with the rendered treatment plan appended to the plan section."""
        return self.model_copy(update={"plan": _append_section(self.plan, plan.render())})


def _append_section(current: Optional[str], addition: str) -> str:
    if not current:
        return addition
    return f"{current}\n\n{addition}"


# --- Symptom analysis ---

class DifferentialDiagnosis(WireModel):
    diagnosis: Optional[str] = None
    probability: Label = Field(default=None, description="alta/media/baja")
    justification: Optional[str] = None


class RedFlag(WireModel):
    symptom: Optional[str] = None
    implication: Optional[str] = None


class PhysicalExamSuggestion(WireModel):
    system: Optional[str] = None
    specific_tests: Optional[str] = None
    look_for: Optional[str] = None


class WorkupItem(WireModel):
    category: Optional[str] = Field(default=None, description="laboratorio/imagen/otro")
    test: Optional[str] = None
    indication: Optional[str] = None


class SymptomAnalysis(WireModel):
    differential_diagnoses: Optional[List[DifferentialDiagnosis]] = None
    red_flags: Optional[List[RedFlag]] = None
    physical_exam: Optional[List[PhysicalExamSuggestion]] = None
    initial_workup: Optional[List[WorkupItem]] = None

    def render(self) -> str:
        lines = ["Análisis de síntomas (IA):"]
        for dx in self.differential_diagnoses or []:
            lines.append(f"- {dx.diagnosis} ({dx.probability}): {dx.justification}")
        if self.red_flags:
            lines.append("Señales de alarma:")
            lines.extend(f"- {flag.symptom}: {flag.implication}" for flag in self.red_flags)
        return "\n".join(lines)


# --- Treatment plan ---

class PharmacologicalItem(WireModel):
    medication: Optional[str] = None
    dosage: Optional[str] = None
    route: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None


class NonPharmacologicalItem(WireModel):
    category: Optional[str] = None
    intervention: Optional[str] = None
    instructions: Optional[str] = None


class FollowUp(WireModel):
    next_appointment: Optional[str] = None
    monitoring_parameters: Optional[List[str]] = None
    improvement_criteria: Optional[str] = None


class PatientEducationItem(WireModel):
    topic: Optional[str] = None
    content: Optional[str] = None
    warning_signs: Optional[List[str]] = None


class Referral(WireModel):
    specialty: Optional[str] = None
    reason: Optional[str] = None
    urgency: Label = Field(default=None, description="urgente/rutinaria/electiva")


class DrugInteraction(WireModel):
    interaction: Optional[str] = None
    severity: Label = Field(default=None, description="leve/moderada/severa")
    recommendation: Optional[str] = None


class TreatmentPlan(WireModel):
    pharmacological_treatment: Optional[List[PharmacologicalItem]] = None
    non_pharmacological: Optional[List[NonPharmacologicalItem]] = None
    follow_up: Optional[FollowUp] = None
    patient_education: Optional[List[PatientEducationItem]] = None
    referrals: Optional[List[Referral]] = None
    drug_interactions: Optional[List[DrugInteraction]] = None

    def render(self) -> str:
        lines = ["Plan de tratamiento (IA):"]
        for item in self.pharmacological_treatment or []:
            lines.append(
                f"- {item.medication} {item.dosage}, {item.route}, {item.frequency}, {item.duration}"
            )
        for item in self.non_pharmacological or []:
            lines.append(f"- {item.intervention}: {item.instructions}")
        if self.follow_up and self.follow_up.next_appointment:
            lines.append(f"Seguimiento: {self.follow_up.next_appointment}")
        for referral in self.referrals or []:
            lines.append(f"Derivación: {referral.specialty} ({referral.urgency}) - {referral.reason}")
        return "\n".join(lines)
