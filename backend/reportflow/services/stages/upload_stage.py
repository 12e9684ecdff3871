"""
Upload stage: resolve the source document and store it for the run.
"""

from reportflow.models.schemas import LoadedDocument, SourceDocument
from reportflow.services.collaborators.base import DocumentExtractor
from reportflow.services.stages.base import BaseStage, StageContext, StageError


class UploadStage(BaseStage):
    """Store the submitted document under upload_dir/<subject_id>/.

    Input (from context metadata):
        - document: SourceDocument

    Output:
        LoadedDocument with the stored path and size

    Not cancellable: a partially written upload is worse than a late pause.
    """

    id = "upload"
    result_model = LoadedDocument
    cancellable = False

    def __init__(self, extractor: DocumentExtractor):
        self.extractor = extractor

    async def execute(self, context: StageContext) -> LoadedDocument:
        document = context.get_metadata("document")
        if not isinstance(document, SourceDocument) or not document.has_source:
            raise StageError(self.id, "No document to upload")

        result = await self.extractor.load(document, context.subject_id)
        return self.unwrap(result)
