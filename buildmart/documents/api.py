from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from sqlalchemy.orm import Session

from buildmart.core.auth import AuthUser
from buildmart.core.database import get_db
from buildmart.core.rbac import require_permissions
from buildmart.documents.schemas import (
    DocumentCategoryCreate,
    DocumentCategoryRead,
    DocumentCategoryUpdate,
    DocumentRead,
)
from buildmart.documents.service import DocumentFile, DocumentService, get_document_service

router = APIRouter(prefix="/api/documents", tags=["documents"])


@router.post("/categories", response_model=DocumentCategoryRead, status_code=status.HTTP_201_CREATED)
def create_category(
    dto: DocumentCategoryCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:documents")),
    service: DocumentService = Depends(get_document_service),
) -> DocumentCategoryRead:
    return service.create_category(db, dto)


@router.get("/categories", response_model=list[DocumentCategoryRead])
def list_categories(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:documents", "manage:documents")),
    service: DocumentService = Depends(get_document_service),
) -> list[DocumentCategoryRead]:
    return service.list_categories(db)


@router.put("/categories/{category_id}", response_model=DocumentCategoryRead)
def update_category(
    category_id: uuid.UUID,
    dto: DocumentCategoryUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:documents")),
    service: DocumentService = Depends(get_document_service),
) -> DocumentCategoryRead:
    return service.update_category(db, category_id, dto)


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:documents")),
    service: DocumentService = Depends(get_document_service),
) -> dict[str, str]:
    service.delete_category(db, category_id)
    return {"message": "category deleted"}


@router.post("/upload", response_model=DocumentRead, status_code=status.HTTP_201_CREATED)
def upload_document(
    file: UploadFile = File(...),
    title: str = Form(...),
    category_id: uuid.UUID = Form(..., alias="categoryId"),
    description: str | None = Form(default=None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_permissions("upload:document", "manage:documents")),
    service: DocumentService = Depends(get_document_service),
) -> DocumentRead:
    content = file.file.read()
    return service.upload_document(
        db,
        user.id,
        title=title,
        category_id=category_id,
        description=description,
        file=DocumentFile(
            filename=file.filename or "document.bin",
            content_type=file.content_type or "application/octet-stream",
            content=content,
        ),
    )


@router.get("", response_model=list[DocumentRead])
def list_documents(
    category_id: uuid.UUID | None = Query(default=None, alias="categoryId"),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:documents", "manage:documents")),
    service: DocumentService = Depends(get_document_service),
) -> list[DocumentRead]:
    return service.list_documents(db, category_id=category_id)


@router.get("/{document_id}", response_model=DocumentRead)
def get_document(
    document_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:documents", "manage:documents")),
    service: DocumentService = Depends(get_document_service),
) -> DocumentRead:
    return service.get_document(db, document_id)


@router.get("/{document_id}/download")
def download_document(
    document_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:documents", "manage:documents")),
    service: DocumentService = Depends(get_document_service),
) -> Response:
    document, content = service.read_content(db, document_id)
    return Response(
        content=content,
        media_type=document.file_type,
        headers={"Content-Disposition": f'attachment; filename="{document.filename}"'},
    )


@router.get("/{document_id}/preview")
def preview_document(
    document_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:documents", "manage:documents")),
    service: DocumentService = Depends(get_document_service),
) -> Response:
    document, content = service.read_content(db, document_id)
    return Response(
        content=content,
        media_type=document.file_type,
        headers={"Content-Disposition": f'inline; filename="{document.filename}"'},
    )


@router.delete("/{document_id}")
def delete_document(
    document_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("manage:documents")),
    service: DocumentService = Depends(get_document_service),
) -> dict[str, str]:
    service.delete_document(db, document_id)
    return {"message": "document deleted"}
