from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from werkzeug.utils import secure_filename

from buildmart.core.errors import ConflictError, NotFoundError, ValidationFailedError
from buildmart.documents.models import Document, DocumentCategory
from buildmart.documents.schemas import (
    DocumentCategoryCreate,
    DocumentCategoryRead,
    DocumentCategoryUpdate,
    DocumentRead,
)
from buildmart.integrations.storage import BlobStorage, build_blob_storage


logger = logging.getLogger("buildmart.documents")


@dataclass
class DocumentFile:
    filename: str
    content_type: str
    content: bytes


@dataclass
class DocumentService:
    storage: BlobStorage | None = None

    def _storage(self) -> BlobStorage:
        if self.storage is None:
            self.storage = build_blob_storage()
        return self.storage

    def create_category(self, session: Session, dto: DocumentCategoryCreate) -> DocumentCategoryRead:
        category = DocumentCategory(name=dto.name.strip(), description=dto.description)
        session.add(category)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("document category already exists")
        session.refresh(category)
        return DocumentCategoryRead.model_validate(category)

    def list_categories(self, session: Session) -> list[DocumentCategoryRead]:
        rows = session.scalars(select(DocumentCategory).order_by(DocumentCategory.name.asc())).all()
        return [DocumentCategoryRead.model_validate(row) for row in rows]

    def update_category(
        self,
        session: Session,
        category_id: uuid.UUID,
        dto: DocumentCategoryUpdate,
    ) -> DocumentCategoryRead:
        category = self._get_category(session, category_id)
        payload = dto.model_dump(exclude_unset=True)
        if payload.get("name") is not None:
            category.name = payload["name"].strip()
        if "description" in payload:
            category.description = payload["description"]
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("document category already exists")
        session.refresh(category)
        return DocumentCategoryRead.model_validate(category)

    def delete_category(self, session: Session, category_id: uuid.UUID) -> None:
        category = self._get_category(session, category_id)
        count = session.scalar(select(func.count(Document.id)).where(Document.category_id == category.id)) or 0
        if count:
            raise ConflictError(
                "cannot delete category with existing documents",
                details={"document_count": int(count)},
            )
        session.delete(category)
        session.commit()

    def upload_document(
        self,
        session: Session,
        actor_user_id: uuid.UUID,
        *,
        title: str,
        category_id: uuid.UUID,
        file: DocumentFile,
        description: str | None = None,
    ) -> DocumentRead:
        if not title.strip():
            raise ValidationFailedError("document title is required")
        if not file.content:
            raise ValidationFailedError("no file uploaded")
        self._get_category(session, category_id)

        filename = secure_filename(file.filename) or "document.bin"
        document_id = uuid.uuid4()
        storage_key = f"documents/{document_id}-{filename}"
        file_url = self._storage().put(storage_key, file.content, file.content_type)

        document = Document(
            id=document_id,
            title=title.strip(),
            description=description,
            filename=filename,
            file_type=file.content_type,
            file_size=len(file.content),
            storage_key=storage_key,
            file_url=file_url,
            category_id=category_id,
            uploaded_by_id=actor_user_id,
        )
        session.add(document)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            self._storage().delete(storage_key)
            raise
        logger.info("document.uploaded", extra={"document_id": str(document.id), "count": document.file_size})
        return self.get_document(session, document.id)

    def list_documents(self, session: Session, *, category_id: uuid.UUID | None = None) -> list[DocumentRead]:
        stmt = select(Document).options(selectinload(Document.category), selectinload(Document.uploaded_by))
        if category_id is not None:
            stmt = stmt.where(Document.category_id == category_id)
        rows = session.scalars(stmt.order_by(Document.created_at.desc())).all()
        return [DocumentRead.model_validate(row) for row in rows]

    def get_document(self, session: Session, document_id: uuid.UUID) -> DocumentRead:
        return DocumentRead.model_validate(self._get_document(session, document_id))

    def read_content(self, session: Session, document_id: uuid.UUID) -> tuple[Document, bytes]:
        document = self._get_document(session, document_id)
        return document, self._storage().get(document.storage_key)

    def delete_document(self, session: Session, document_id: uuid.UUID) -> None:
        document = self._get_document(session, document_id)
        storage_key = document.storage_key
        session.delete(document)
        session.commit()
        self._storage().delete(storage_key)
        logger.info("document.deleted", extra={"document_id": str(document_id)})

    def _get_category(self, session: Session, category_id: uuid.UUID) -> DocumentCategory:
        category = session.get(DocumentCategory, category_id)
        if category is None:
            raise NotFoundError("category not found")
        return category

    def _get_document(self, session: Session, document_id: uuid.UUID) -> Document:
        document = session.scalar(
            select(Document)
            .options(selectinload(Document.category), selectinload(Document.uploaded_by))
            .where(Document.id == document_id)
        )
        if document is None:
            raise NotFoundError("document not found")
        return document


document_service = DocumentService()


def get_document_service() -> DocumentService:
    return document_service
