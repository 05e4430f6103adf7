"""
Dependency providers for the routers.

Each provider builds its object once from settings; tests swap them out with
``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends

from ..core.config import settings
from ..services.events import EventPublisher, build_event_publisher
from ..services.invoice_confirmation import InvoiceConfirmationService
from ..services.invoice_extractor import ExtractorConfig
from ..services.projects import ProjectService
from ..services.purchase_invoices import InvoiceDraftService
from ..services.storage import JsonProjectRepository, LocalFileStore, ProjectRepositoryBase


@lru_cache
def get_repository() -> ProjectRepositoryBase:
    return JsonProjectRepository(settings.data_dir)


@lru_cache
def get_file_store() -> LocalFileStore:
    return LocalFileStore(settings.storage_root)


@lru_cache
def get_extractor_config() -> ExtractorConfig:
    return ExtractorConfig.from_settings(settings)


@lru_cache
def get_event_publisher() -> EventPublisher:
    return build_event_publisher(settings)


def get_draft_service(
    repository: ProjectRepositoryBase = Depends(get_repository),
    file_store: LocalFileStore = Depends(get_file_store),
    extractor_config: ExtractorConfig = Depends(get_extractor_config),
) -> InvoiceDraftService:
    return InvoiceDraftService(
        repository=repository,
        file_store=file_store,
        extractor_config=extractor_config,
        raw_output_max_chars=settings.raw_output_max_chars,
    )


def get_confirmation_service(
    repository: ProjectRepositoryBase = Depends(get_repository),
    event_publisher: EventPublisher = Depends(get_event_publisher),
) -> InvoiceConfirmationService:
    return InvoiceConfirmationService(repository=repository, event_publisher=event_publisher)


def get_project_service(
    repository: ProjectRepositoryBase = Depends(get_repository),
    file_store: LocalFileStore = Depends(get_file_store),
) -> ProjectService:
    return ProjectService(repository=repository, file_store=file_store)
