"""
Project-level helpers the invoice pipeline depends on: creating projects,
storing invoice attachments, and registering catalog materials that invoice
lines can be linked to.
"""

import re
import uuid
from datetime import datetime, UTC
from typing import Optional

from loguru import logger

from ..core.errors import InvoiceValidationError, NotFoundError
from ..models.project import AddMaterialRequest, Attachment, MaterialCatalogItem, Project
from .purchase_invoices import find_attachment_or_raise
from .storage import LocalFileStore, ProjectRepositoryBase, build_storage_key

_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def slugify(name: str, default: str = "material") -> str:
    return _SLUG_CHARS.sub("-", name.lower()).strip("-") or default


def unique_id(base: str, taken: set[str]) -> str:
    """``base``, or ``base-2``, ``base-3``... whichever is free first"""
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


class ProjectService:
    def __init__(self, repository: ProjectRepositoryBase, file_store: LocalFileStore):
        self.repository = repository
        self.file_store = file_store

    def create_project(self, name: str, project_id: Optional[str] = None) -> Project:
        name = name.strip()
        if not name:
            raise InvoiceValidationError("Project name is required.")
        project_id = (project_id or "").strip() or str(uuid.uuid4())
        project = self.repository.create_project(Project(id=project_id, name=name))
        logger.info("Project created", project_id=project.id)
        return project

    def get_project(self, project_id: str) -> Project:
        return self.repository.require_project(project_id)

    def add_attachment(
        self,
        project_id: str,
        file_bytes: bytes,
        original_name: str,
        mime_type: str,
        category: str = "other",
        file_title: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Attachment:
        """
        Store the bytes and register the attachment on the project.

        The stored file is removed again if the project rejects the attachment.
        """
        self.repository.require_project(project_id)
        if not file_bytes:
            raise InvoiceValidationError("Uploaded file is empty.")

        attachment_id = str(uuid.uuid4())
        original_name = original_name or "file"
        storage_key = build_storage_key(project_id, attachment_id, original_name)
        attachment = Attachment(
            id=attachment_id,
            project_id=project_id,
            scope_type="project",
            category=category,
            file_title=(file_title or "").strip() or None,
            original_name=original_name,
            mime_type=mime_type or "application/octet-stream",
            size_bytes=len(file_bytes),
            storage_key=storage_key,
            uploaded_at=datetime.now(UTC).isoformat(),
            note=(note or "").strip() or None,
        )

        self.file_store.save_bytes(storage_key, file_bytes)
        try:
            self.repository.add_attachment(project_id, attachment)
        except Exception:
            self.file_store.delete_bytes(storage_key)
            raise

        logger.info(
            "Attachment stored",
            project_id=project_id,
            attachment_id=attachment_id,
            category=category,
            size_bytes=attachment.size_bytes,
        )
        return attachment

    def read_attachment(self, project_id: str, attachment_id: str) -> tuple[Attachment, bytes]:
        project = self.repository.require_project(project_id)
        attachment = find_attachment_or_raise(project, attachment_id)
        try:
            return attachment, self.file_store.read_bytes(attachment.storage_key)
        except FileNotFoundError:
            raise NotFoundError(f"Attachment file is missing from storage: {attachment_id}")

    def add_material(self, project_id: str, req: AddMaterialRequest) -> MaterialCatalogItem:
        """Register a catalog material; the id defaults to a slug of the name"""
        project = self.repository.require_project(project_id)
        name = req.name.strip()
        if not name:
            raise InvoiceValidationError("Material name is required.")

        requested_id = (req.id or "").strip()
        material_id = requested_id or unique_id(slugify(name), project.material_ids())
        material = MaterialCatalogItem(
            id=material_id,
            name=name,
            unit_type=req.unit_type,
            estimated_price=req.estimated_price,
            category_id=req.category_id,
            notes=req.notes,
        )
        self.repository.add_material_catalog_item(project_id, material)
        logger.info("Material added", project_id=project_id, material_id=material_id)
        return material
