from .file_store import LocalFileStore, build_storage_key
from .project_repository_base import ProjectRepositoryBase
from .projects_json import JsonProjectRepository
from .projects_memory import InMemoryProjectRepository

__all__ = [
    "LocalFileStore",
    "build_storage_key",
    "ProjectRepositoryBase",
    "JsonProjectRepository",
    "InMemoryProjectRepository",
]
