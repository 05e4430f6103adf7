from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status

from ...models.project import (
    AddMaterialRequest,
    Attachment,
    AttachmentCategory,
    CreateProjectRequest,
    MaterialCatalogItem,
    Project,
)
from ...services.projects import ProjectService
from ..deps import get_project_service

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("", response_model=Project, status_code=status.HTTP_201_CREATED)
def create_project(req: CreateProjectRequest, projects: ProjectService = Depends(get_project_service)):
    return projects.create_project(req.name, project_id=req.id)


@router.get("/{project_id}", response_model=Project)
def get_project(project_id: str, projects: ProjectService = Depends(get_project_service)):
    return projects.get_project(project_id)


@router.post("/{project_id}/attachments", response_model=Attachment, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    project_id: str,
    file: UploadFile = File(...),
    category: AttachmentCategory = Form("other"),
    file_title: Optional[str] = Form(None),
    note: Optional[str] = Form(None),
    projects: ProjectService = Depends(get_project_service),
):
    """
    Upload a file to a project.

    Invoice photos must be uploaded with ``category=invoice`` before a draft
    can be extracted from them.
    """
    content = await file.read()
    return projects.add_attachment(
        project_id,
        content,
        original_name=file.filename or "file",
        mime_type=file.content_type or "application/octet-stream",
        category=category,
        file_title=file_title,
        note=note,
    )


@router.get("/{project_id}/attachments/{attachment_id}/download")
def download_attachment(
    project_id: str,
    attachment_id: str,
    projects: ProjectService = Depends(get_project_service),
):
    attachment, content = projects.read_attachment(project_id, attachment_id)
    return Response(
        content=content,
        media_type=attachment.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{attachment.original_name}"'},
    )


@router.post("/{project_id}/materials", response_model=MaterialCatalogItem, status_code=status.HTTP_201_CREATED)
def add_material(
    project_id: str,
    req: AddMaterialRequest,
    projects: ProjectService = Depends(get_project_service),
):
    return projects.add_material(project_id, req)
