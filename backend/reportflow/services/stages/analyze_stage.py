"""
Analyze stage: AI analysis of the report text.
"""

import logging

from reportflow.models.pipeline import AUDIENCE_BY_DOCUMENT_TYPE
from reportflow.models.schemas import AnalysisOutput, ExtractedText
from reportflow.services.collaborators.base import ScriptAnalyzer
from reportflow.services.stages.base import BaseStage, StageContext

logger = logging.getLogger(__name__)


class AnalyzeStage(BaseStage):
    """Analyse extracted text for the document's audience.

    Input (from context):
        - extract: ExtractedText

    Output:
        AnalysisOutput with financial data, script and alternatives

    The audience follows the document type: quarterly reports are written
    for investors, board packs for the board.
    """

    id = "analyze"
    result_model = AnalysisOutput
    depends_on = ["extract"]

    def __init__(self, analyzer: ScriptAnalyzer):
        self.analyzer = analyzer

    async def execute(self, context: StageContext) -> AnalysisOutput:
        self.validate_context(context)
        extracted: ExtractedText = context.get_result("extract")
        audience = AUDIENCE_BY_DOCUMENT_TYPE[context.document_type]

        logger.info(
            f"Analysing {extracted.word_count} words "
            f"({context.document_type.value} -> {audience.value})"
        )
        result = await self.analyzer.analyze(
            extracted.content, context.document_type, audience
        )
        return self.unwrap(result)

    def contribute(self, output: AnalysisOutput) -> dict:
        return {"financial_data": output.financial_data}
