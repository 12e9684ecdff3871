"""
Extract stage: pull plain text out of the stored document.
"""

from reportflow.models.schemas import ExtractedText
from reportflow.services.collaborators.base import DocumentExtractor
from reportflow.services.stages.base import BaseStage, StageContext


class ExtractStage(BaseStage):
    """Extract report text.

    Input (from context):
        - upload: LoadedDocument

    Output:
        ExtractedText (fails when the text is too short to analyse)
    """

    id = "extract"
    result_model = ExtractedText
    depends_on = ["upload"]

    def __init__(self, extractor: DocumentExtractor):
        self.extractor = extractor

    async def execute(self, context: StageContext) -> ExtractedText:
        self.validate_context(context)
        loaded = context.get_result("upload")
        return self.unwrap(await self.extractor.extract_text(loaded))
