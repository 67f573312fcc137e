from __future__ import annotations

from typing import Any, List, Optional

from asktrevor.logging import get_logger
from asktrevor.service.errors import ForbiddenError, NotFoundError
from asktrevor.storage.models import UploadedDocument

logger = get_logger(__name__)


class DocumentService:
    """Project document metadata. Only the uploader may retag or delete."""

    def __init__(self, store: Any) -> None:
        self.store = store

    def list_documents(self, project_id: str) -> List[UploadedDocument]:
        return self.store.list_documents(project_id)

    def create_document(
        self,
        user_id: str,
        *,
        project_id: str,
        name: str,
        file_url: str,
        file_size: Optional[int] = None,
        mime_type: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> UploadedDocument:
        document = self.store.create_document(
            UploadedDocument(
                project_id=project_id,
                name=name,
                file_url=file_url,
                uploaded_by=user_id,
                file_size=file_size,
                mime_type=mime_type,
                tag=tag,
            )
        )
        logger.info("document_created", document_id=document.id, project_id=project_id, tag=tag)
        return document

    def _owned(self, user_id: str, document_id: str) -> UploadedDocument:
        document = self.store.get_document(document_id)
        if not document:
            raise NotFoundError("document not found", detail={"document_id": document_id})
        if document.uploaded_by != user_id:
            logger.warning("document_mutation_forbidden", document_id=document_id)
            raise ForbiddenError("only the uploader can modify this document")
        return document

    def set_tag(self, user_id: str, document_id: str, tag: Optional[str]) -> UploadedDocument:
        self._owned(user_id, document_id)
        updated = self.store.update_document_tag(document_id, tag)
        if not updated:
            raise NotFoundError("document not found", detail={"document_id": document_id})
        logger.info("document_tagged", document_id=document_id, tag=tag)
        return updated

    def delete(self, user_id: str, document_id: str) -> None:
        self._owned(user_id, document_id)
        if not self.store.delete_document(document_id):
            raise NotFoundError("document not found", detail={"document_id": document_id})
        logger.info("document_deleted", document_id=document_id)
