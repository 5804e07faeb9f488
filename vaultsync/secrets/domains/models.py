"""Domain models for secret reconciliation."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional


@dataclass(frozen=True)
class SecretRecord:
    """A single secret: a case-sensitive key and an opaque value."""
    key: str
    value: str

    def __post_init__(self):
        if not self.key:
            raise ValueError("Secret key cannot be empty")


# Key -> SecretRecord, rebuilt for every pull or push
SecretSet = Dict[str, SecretRecord]


def to_secret_set(records: Iterable[SecretRecord]) -> SecretSet:
    """Index records by key. Later records with the same key win."""
    return {record.key: record for record in records}


def records_from_lines(lines: Iterable[str]) -> List[SecretRecord]:
    """
    Parse free-text ``Key = Value`` / ``Key=Value`` lines into records.

    The line is split on the first ``=`` and both sides are trimmed.
    Lines without ``=`` or with an empty key are skipped.

    Args:
        lines: Raw text lines

    Returns:
        Records in input order
    """
    records = []
    for line in lines:
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        records.append(SecretRecord(key=key, value=value.strip()))
    return records


class LineKind(str, Enum):
    COMMENT = "comment"
    BLANK = "blank"
    ASSIGNMENT = "assignment"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class EnvLine:
    """One line of an env file, keeping its original text."""
    kind: LineKind
    raw: str
    key: str = ""
    raw_value: str = ""
    has_explicit_value: bool = False

    @property
    def is_assignment(self) -> bool:
        return self.kind == LineKind.ASSIGNMENT


class PermissionType(str, Enum):
    READ = "read"
    UPDATE = "update"
    OWNER = "owner"


@dataclass(frozen=True)
class Permission:
    """Access granted on a folder to a user or a group."""
    aro: str  # "User" or "Group"
    aro_id: str
    type: PermissionType


@dataclass(frozen=True)
class User:
    username: str


@dataclass(frozen=True)
class UserPermission:
    user: User
    type: PermissionType


@dataclass(frozen=True)
class FolderResource:
    """A remote secret inside a folder. The value is fetched on demand."""
    id: str
    name: str
    folder_id: str = ""


@dataclass
class Folder:
    id: str
    name: str
    parent_id: Optional[str] = None
    resources: List[FolderResource] = field(default_factory=list)
    permissions: List[Permission] = field(default_factory=list)


@dataclass
class ResourceResult:
    """Outcome of fetching one resource: either a record or an error."""
    resource: FolderResource
    record: Optional[SecretRecord] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None


@dataclass(frozen=True)
class GroupMembership:
    username: str
    manager: bool = False


@dataclass
class Group:
    id: str
    name: str
    members: List[GroupMembership] = field(default_factory=list)


SECRET_TYPES = ("dotnet", "env")


@dataclass
class ProjectConfig:
    """
    Resolved project settings for one command.

    Attributes:
        folder: Vault folder to operate on
        type: Local store variant, "dotnet" or "env"
        path: Project directory (dotnet) or env file path (env)
        team: Group name used by team and migrate commands
    """
    folder: str = ""
    type: str = "dotnet"
    path: str = ""
    team: str = ""
