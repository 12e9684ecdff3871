"""
Script stage: finalise the presenter script and its alternatives.

Uses the script written during analysis when there is one. Otherwise a
script is composed from the extracted financial data: company, period,
headline metrics and up to three highlights.
"""

import logging

from reportflow.models.pipeline import Audience, AUDIENCE_BY_DOCUMENT_TYPE
from reportflow.models.schemas import (
    AnalysisOutput,
    FailureKind,
    FinancialData,
    ScriptAlternative,
    ScriptBundle,
)
from reportflow.services.stages.base import BaseStage, StageContext, StageError

logger = logging.getLogger(__name__)

METRIC_LABELS = {
    "revenue": "Revenue came in at {}",
    "growth_rate": "growth was {}",
    "operating_result": "the operating result was {}",
    "net_result": "and the net result ended at {}",
}

OPENINGS = {
    Audience.INVESTORS: "Welcome to {company}'s results presentation for {period}.",
    Audience.BOARD: "This is the board summary for {company} covering {period}.",
}

CLOSINGS = {
    Audience.INVESTORS: "Thank you for your continued interest in {company}.",
    Audience.BOARD: "The full figures are available in the board pack.",
}

MAX_HIGHLIGHTS = 3


def compose_script(data: FinancialData, audience: Audience) -> str:
    """
    Write a short presenter script from structured financial data.

    Args:
        data: Financial data with at least a company name
        audience: Who the script addresses

    Returns:
        Script text, one paragraph per section
    """
    company = data.company_name or "the company"
    period = data.period or "the period"

    paragraphs = [OPENINGS[audience].format(company=company, period=period)]

    metrics = [
        label.format(data.financial_metrics[key])
        for key, label in METRIC_LABELS.items()
        if data.financial_metrics.get(key)
    ]
    if metrics:
        paragraphs.append(", ".join(metrics) + ".")

    highlights = [h.strip().rstrip(".") for h in data.key_highlights if h.strip()]
    if highlights:
        lines = [f"{h}." for h in highlights[:MAX_HIGHLIGHTS]]
        paragraphs.append("Key highlights this period: " + " ".join(lines))

    paragraphs.append(CLOSINGS[audience].format(company=company))
    return "\n\n".join(paragraphs)


def executive_alternative(data: FinancialData, script: str) -> ScriptAlternative:
    """Executive-summary variant built from the primary script."""
    return ScriptAlternative(
        type="executive",
        title=f"{data.company_name or 'Company'} {data.period or ''}".strip()
        + " executive summary",
        duration="2-3 minutes",
        script=script,
        tone="professional",
        key_points=data.key_highlights[:MAX_HIGHLIGHTS],
    )


class ScriptStage(BaseStage):
    """Produce the final script bundle.

    Input (from context):
        - analyze: AnalysisOutput

    Output:
        ScriptBundle with primary script and alternatives

    Not cancellable: it runs locally and finishes quickly.
    """

    id = "generate_scripts"
    result_model = ScriptBundle
    depends_on = ["analyze"]
    cancellable = False

    async def execute(self, context: StageContext) -> ScriptBundle:
        self.validate_context(context)
        analysis: AnalysisOutput = context.get_result("analyze")
        data = analysis.financial_data

        if data.data_quality == "low":
            raise StageError(
                self.id,
                "The report does not contain enough financial data to write a script.",
                kind=FailureKind.VALIDATION,
            )

        if analysis.script_text.strip():
            alternatives = analysis.script_alternatives or [
                executive_alternative(data, analysis.script_text)
            ]
            return ScriptBundle(
                script_text=analysis.script_text.strip(),
                script_alternatives=alternatives,
            )

        if not data.company_name:
            raise StageError(
                self.id,
                "Could not identify the company in the report.",
                kind=FailureKind.VALIDATION,
            )

        audience = AUDIENCE_BY_DOCUMENT_TYPE[context.document_type]
        script = compose_script(data, audience)
        logger.info(f"Composed {audience.value} script: {len(script.split())} words")

        return ScriptBundle(
            script_text=script,
            script_alternatives=analysis.script_alternatives
            or [executive_alternative(data, script)],
            composed=True,
        )

    def contribute(self, output: ScriptBundle) -> dict:
        return {
            "script_text": output.script_text,
            "script_alternatives": output.script_alternatives,
            "word_count": output.word_count,
        }
