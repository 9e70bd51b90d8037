"""
LLM Service for consultation structuring and clinical reasoning
"""
import json
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from medscribe.config import AIProvider
from medscribe.core.exceptions import InsufficientClinicalInput, InvalidRequestError, UnparseableStructure
from medscribe.core.logging import get_logger
from medscribe.models.clinical import StructuredConsultation, SymptomAnalysis, TreatmentPlan
from medscribe.models.requests import SymptomAnalysisRequest, TreatmentPlanRequest
from medscribe.services.providers import ProviderRegistry, provider_registry

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


STRUCTURE_PROMPT = """
Eres un asistente médico experto. Tu tarea es tomar la transcripción de una consulta médica y estructurarla en formato SOAP profesional.

INSTRUCCIONES:
- Organiza la información en exactamente estas 6 categorías
- Si no hay información para alguna categoría, escribe "No especificado"
- Usa lenguaje médico profesional, preciso y conciso

Responde ÚNICAMENTE con un objeto JSON válido con esta estructura exacta:
{
  "subjetivo": "Motivo de consulta y síntomas del paciente",
  "objetivo": "Historia de la enfermedad actual y antecedentes relevantes",
  "examenFisico": "Hallazgos del examen físico y signos vitales",
  "impresionDiagnostica": "Diagnóstico diferencial o impresión diagnóstica",
  "plan": "Plan de tratamiento, medicamentos, seguimiento",
  "analisisDelCaso": "Resumen ejecutivo y consideraciones clínicas"
}

Transcripción a estructurar:
"""

SYMPTOM_ANALYSIS_PROMPT = """
Eres un asistente médico experto en el análisis de síntomas.

Con base en los síntomas y la información del paciente, entrega:
1. Diagnósticos diferenciales ordenados por probabilidad, con una breve justificación.
2. Señales de alarma que requieran atención inmediata o derivación urgente.
3. Exámenes físicos dirigidos, maniobras específicas y signos vitales a evaluar.
4. Exámenes complementarios iniciales (laboratorio, imagen, otros).

Si la información es insuficiente, indica qué datos adicionales serían útiles.

IMPORTANTE: Responde SOLO con un objeto JSON válido con esta estructura:
{
  "differentialDiagnoses": [{"diagnosis": "", "probability": "alta/media/baja", "justification": ""}],
  "redFlags": [{"symptom": "", "implication": ""}],
  "physicalExam": [{"system": "", "specificTests": "", "lookFor": ""}],
  "initialWorkup": [{"category": "laboratorio/imagen/otro", "test": "", "indication": ""}]
}
"""

TREATMENT_PLAN_PROMPT = """
Eres un médico experto que genera planes de tratamiento basados en evidencia.

Con base en la información clínica, genera un plan que incluya tratamiento farmacológico
(dosis, vía, frecuencia, duración), medidas no farmacológicas, seguimiento y monitoreo,
educación al paciente con signos de alarma, y derivaciones con su urgencia.
Considera siempre alergias e interacciones con los medicamentos actuales del paciente.

IMPORTANTE: Responde SOLO con un objeto JSON válido con esta estructura:
{
  "pharmacologicalTreatment": [{"medication": "", "dosage": "", "route": "", "frequency": "", "duration": "", "instructions": ""}],
  "nonPharmacological": [{"category": "", "intervention": "", "instructions": ""}],
  "followUp": {"nextAppointment": "", "monitoringParameters": [""], "improvementCriteria": ""},
  "patientEducation": [{"topic": "", "content": "", "warningSigns": [""]}],
  "referrals": [{"specialty": "", "reason": "", "urgency": "urgente/rutinaria/electiva"}],
  "drugInteractions": [{"interaction": "", "severity": "leve/moderada/severa", "recommendation": ""}]
}
"""

# (request attribute, label in the prompt context, audit flag)
SYMPTOM_CONTEXT_FIELDS = [
    ("symptoms", "Síntomas presentados", None),
    ("patient_age", "Edad", "age"),
    ("patient_gender", "Género", "gender"),
    ("medical_history", "Antecedentes médicos", "medical_history"),
    ("current_medications", "Medicamentos actuales", "current_medications"),
]

PLAN_CONTEXT_FIELDS = [
    ("symptoms", "Síntomas", "symptoms"),
    ("assessment", "Evaluación", "assessment"),
    ("diagnosis_summary", "Impresión diagnóstica", "diagnosis"),
    ("patient_age", "Edad del paciente", "patient_age"),
    ("patient_gender", "Género", "patient_gender"),
    ("medical_history", "Antecedentes médicos", "medical_history"),
    ("current_medications", "Medicamentos actuales", "current_medications"),
    ("allergies", "Alergias", "allergies"),
]

PLAN_REQUIRED_FIELDS = ("symptoms", "assessment", "diagnosis_summary")


def extract_json_object(text: Optional[str]) -> Dict[str, Any]:
    """
    Returns the first balanced ``{...}`` object found in ``text``.

    Braces inside JSON strings are ignored. Raises :class:`UnparseableStructure`
    when no balanced object exists or it is not valid JSON.
    """
    if not text:
        raise UnparseableStructure("Provider returned an empty reply")

    start = text.find("{")
    while start != -1:
        end = _matching_brace(text, start)
        if end is not None:
            candidate = text[start:end + 1]
            try:
                parsed = json.loads(candidate)
            except json.JSONDecodeError as e:
                logger.warning(f"Provider reply holds malformed JSON: {e}")
                raise UnparseableStructure("Could not parse structured response from provider") from e
            if not isinstance(parsed, dict):
                raise UnparseableStructure("Provider reply is not a JSON object")
            return parsed
        start = text.find("{", start + 1)

    raise UnparseableStructure("No JSON object found in provider reply")


def _matching_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return None


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def build_context(request: BaseModel, fields: List[Tuple[str, str, Optional[str]]]) -> Tuple[str, Dict[str, bool]]:
    """Renders the supplied fields as prompt context and reports which optional ones were present."""
    lines = []
    provided = {}
    for attribute, label, flag in fields:
        value = getattr(request, attribute)
        present = _is_present(value)
        if flag:
            provided[flag] = present
        if not present:
            continue
        if attribute == "patient_age":
            lines.append(f"{label}: {value} años")
        else:
            lines.append(f"{label}: {str(value).strip()}")
    return "\n".join(lines), provided


class LLMService:
    """Structuring and clinical-reasoning pipelines over the provider registry."""

    def __init__(self, registry: ProviderRegistry = provider_registry):
        self.registry = registry

    async def structure(self, transcription: str, provider: AIProvider) -> StructuredConsultation:
        """Turns a transcript into the six-section consultation note."""
        if not _is_present(transcription):
            raise InvalidRequestError("Transcription is required")

        client = self.registry.get(provider)
        logger.info(f"Using {client.provider.value} for consultation structuring")
        reply = await client.complete(STRUCTURE_PROMPT, transcription)
        return self._parse(reply, StructuredConsultation)

    async def analyze_symptoms(self, request: SymptomAnalysisRequest) -> Tuple[SymptomAnalysis, Dict[str, bool]]:
        """Differential diagnoses, red flags, exam and workup suggestions for the given symptoms."""
        if not _is_present(request.symptoms):
            raise InsufficientClinicalInput("Symptoms are required")

        context, provided = build_context(request, SYMPTOM_CONTEXT_FIELDS)
        client = self.registry.get(request.provider)
        logger.info(f"Using {client.provider.value} for symptom analysis")
        reply = await client.complete(SYMPTOM_ANALYSIS_PROMPT, f"Información del paciente:\n{context}")
        return self._parse(reply, SymptomAnalysis), provided

    async def generate_plan(self, request: TreatmentPlanRequest) -> Tuple[TreatmentPlan, Dict[str, bool]]:
        """Treatment plan from symptoms, assessment or a diagnosis summary."""
        if not any(_is_present(getattr(request, name)) for name in PLAN_REQUIRED_FIELDS):
            raise InsufficientClinicalInput(
                "Clinical information is required (symptoms, assessment, or diagnosis)"
            )

        context, provided = build_context(request, PLAN_CONTEXT_FIELDS)
        client = self.registry.get(request.provider)
        logger.info(f"Using {client.provider.value} for treatment plan generation")
        reply = await client.complete(TREATMENT_PLAN_PROMPT, f"Información clínica:\n{context}")
        return self._parse(reply, TreatmentPlan), provided

    @staticmethod
    def _parse(reply: str, model: Type[ModelT]) -> ModelT:
        payload = extract_json_object(reply)
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Provider JSON does not match {model.__name__}: {e}")
            raise UnparseableStructure(f"Provider reply does not match the {model.__name__} schema") from e
