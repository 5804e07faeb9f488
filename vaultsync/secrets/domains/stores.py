"""Local secret stores and selection by project type."""
from abc import ABC, abstractmethod
from typing import Iterable, List

from .models import SECRET_TYPES, ProjectConfig, SecretRecord


class SecretStore(ABC):
    """A local representation of a project's secrets."""

    @abstractmethod
    def fetch_all(self) -> List[SecretRecord]:
        """Read every secret the store holds."""

    @abstractmethod
    def set_secrets(self, records: Iterable[SecretRecord]) -> None:
        """Write secrets into the store, keeping anything it does not own."""


def get_store(project: ProjectConfig) -> SecretStore:
    """
    Select the store variant for a project.

    Args:
        project: Resolved project configuration

    Returns:
        EnvFileStore for "env", ExternalProjectStore for "dotnet"

    Raises:
        ValueError: If the project type is not supported
    """
    from .env_file import EnvFileStore
    from .project_store import ExternalProjectStore

    if project.type == "env":
        return EnvFileStore(project.path)
    if project.type == "dotnet":
        return ExternalProjectStore(project.path)
    raise ValueError(
        f"Unsupported secrets type: {project.type} (expected one of: {', '.join(SECRET_TYPES)})"
    )
