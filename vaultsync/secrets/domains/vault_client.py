"""Vault client: folders, resources and groups on GCP Secret Manager.

Secret Manager has a flat namespace of secrets, so vaultsync lays its own
model over it with labels and annotations:

- every object is a secret labelled ``vaultsync-kind`` (folder, resource, group)
- the display name lives in the ``vaultsync-name`` annotation
- resources point at their folder with the ``vaultsync-folder`` label
- a folder may point at its parent with ``vaultsync-parent``
- a resource's value is its latest secret version, wrapped as
  ``{"value": ...}`` because Secret Manager rejects empty payloads
- a group's members are the JSON payload of its latest version
- folder permissions come from the IAM policy on the folder secret
"""
import copy
import json
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import secretmanager

from .deadline import Deadline
from .errors import (
    AmbiguousFolderError,
    AuthFailureError,
    FolderNotFoundError,
    GroupNotFoundError,
    ResourceNotFoundError,
    UserNotFoundError,
    VaultError,
)
from .models import (
    Folder,
    FolderResource,
    Group,
    GroupMembership,
    Permission,
    PermissionType,
    User,
    UserPermission,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_ROOT_FOLDER = "vaultsync"

LABEL_KIND = "vaultsync-kind"
LABEL_FOLDER = "vaultsync-folder"
LABEL_PARENT = "vaultsync-parent"
ANNOTATION_NAME = "vaultsync-name"

KIND_FOLDER = "folder"
KIND_RESOURCE = "resource"
KIND_GROUP = "group"

_ID_PREFIXES = {KIND_FOLDER: "vsf", KIND_RESOURCE: "vsr", KIND_GROUP: "vsg"}

ROLE_PERMISSIONS = {
    "roles/secretmanager.admin": PermissionType.OWNER,
    "roles/secretmanager.secretVersionManager": PermissionType.UPDATE,
    "roles/secretmanager.secretVersionAdder": PermissionType.UPDATE,
    "roles/secretmanager.secretAccessor": PermissionType.READ,
}

_PERMISSION_RANK = {PermissionType.READ: 0, PermissionType.UPDATE: 1, PermissionType.OWNER: 2}


def new_object_id(kind: str) -> str:
    """Secret IDs are label-safe: lowercase letters, digits and dashes."""
    return f"{_ID_PREFIXES[kind]}-{uuid.uuid4().hex[:16]}"


def _secret_id(secret) -> str:
    return secret.name.rsplit("/", 1)[-1]


def _display_name(secret) -> str:
    return secret.annotations.get(ANNOTATION_NAME) or _secret_id(secret)


class VaultClient:
    """Wrapper around GCP Secret Manager exposing the vault object model."""

    def __init__(
        self,
        project_id: str,
        service_account_path: Optional[str] = None,
        client: Optional[Any] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.project_id = project_id
        self.service_account_path = service_account_path
        self.request_timeout = request_timeout
        self.deadline: Optional[Deadline] = None
        self._client = client
        self._injected = client is not None

    def bounded(self, deadline: Deadline) -> "VaultClient":
        """
        Return a client whose calls share the given deadline.

        The copy reuses the underlying Secret Manager client. Each call's
        timeout is capped by what is left of the deadline, and a call made
        after it has expired raises OperationTimeoutError.
        """
        bound = copy.copy(self)
        bound.deadline = deadline
        return bound

    @property
    def client(self) -> secretmanager.SecretManagerServiceClient:
        """Lazy-initialize client."""
        if self._client is None:
            self._client = self._new_client()
        return self._client

    def _new_client(self) -> secretmanager.SecretManagerServiceClient:
        try:
            if self.service_account_path:
                return secretmanager.SecretManagerServiceClient.from_service_account_file(
                    self.service_account_path
                )
            return secretmanager.SecretManagerServiceClient()
        except (auth_exceptions.GoogleAuthError, OSError, ValueError) as e:
            raise AuthFailureError(f"Failed to log in to Secret Manager: {e}") from e

    def login(self) -> None:
        """Drop the current session and create a new authenticated client."""
        if self._injected:
            return
        self._client = self._new_client()

    @property
    def parent(self) -> str:
        return f"projects/{self.project_id}"

    def _path(self, secret_id: str) -> str:
        return f"{self.parent}/secrets/{secret_id}"

    def _timeout(self) -> float:
        if self.deadline is None:
            return self.request_timeout
        left = self.deadline.remaining()
        return self.request_timeout if left is None else min(self.request_timeout, left)

    def _call(self, method: str, request: Dict[str, Any]):
        """
        Invoke a Secret Manager method, logging in again once on auth failure.

        Raises:
            AuthFailureError: If the call is still unauthenticated after re-login
            OperationTimeoutError: If the client's deadline is spent, or the
                call ran out of the time the deadline left it
            gcp_exceptions.NotFound: Passed through for callers to translate
            VaultError: For any other API failure
        """
        for attempt in (1, 2):
            timeout = self._timeout()
            try:
                return getattr(self.client, method)(request=request, timeout=timeout)
            except gcp_exceptions.Unauthenticated as e:
                if attempt == 2:
                    raise AuthFailureError(f"Secret Manager rejected credentials: {e}") from e
                logger.warning("Secret Manager session rejected, logging in again")
                self.login()
            except gcp_exceptions.NotFound:
                raise
            except gcp_exceptions.DeadlineExceeded as e:
                if self.deadline is not None and timeout < self.request_timeout:
                    raise self.deadline.timeout_error() from e
                raise VaultError(f"{method} timed out: {e}") from e
            except gcp_exceptions.GoogleAPICallError as e:
                raise VaultError(f"{method} failed: {e}") from e

    def _list(self, kind: str, folder_id: Optional[str] = None) -> List[Any]:
        query = f"labels.{LABEL_KIND}={kind}"
        if folder_id:
            query += f" AND labels.{LABEL_FOLDER}={folder_id}"
        return list(self._call("list_secrets", {"parent": self.parent, "filter": query}))

    def _get(self, secret_id: str, not_found):
        try:
            return self._call("get_secret", {"name": self._path(secret_id)})
        except gcp_exceptions.NotFound as e:
            raise not_found(secret_id) from e

    def _create(self, kind: str, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        secret_id = new_object_id(kind)
        secret = {
            "replication": {"automatic": {}},
            "labels": {LABEL_KIND: kind, **(labels or {})},
            "annotations": {ANNOTATION_NAME: name},
        }
        self._call("create_secret", {"parent": self.parent, "secret_id": secret_id, "secret": secret})
        logger.debug(f"Created {kind} {name} as {secret_id}")
        return secret_id

    def _add_version(self, secret_id: str, data: str) -> None:
        try:
            self._call(
                "add_secret_version",
                {"parent": self._path(secret_id), "payload": {"data": data.encode("UTF-8")}},
            )
        except gcp_exceptions.NotFound as e:
            raise ResourceNotFoundError(secret_id) from e

    def _access_latest(self, secret_id: str) -> str:
        try:
            response = self._call(
                "access_secret_version", {"name": f"{self._path(secret_id)}/versions/latest"}
            )
        except gcp_exceptions.NotFound as e:
            raise ResourceNotFoundError(secret_id) from e
        return response.payload.data.decode("UTF-8")

    # Folders

    def _folder_from_secret(self, secret) -> Folder:
        return Folder(
            id=_secret_id(secret),
            name=_display_name(secret),
            parent_id=secret.labels.get(LABEL_PARENT) or None,
        )

    def list_folders(self) -> List[Folder]:
        """List folders without their children."""
        return [self._folder_from_secret(secret) for secret in self._list(KIND_FOLDER)]

    def resolve_folder(self, name: str) -> Folder:
        """
        Find a folder by name and load its resources and permissions.

        Matching is case-insensitive. When several folders match, a single
        case-sensitive exact match wins; otherwise the name is ambiguous and
        no folder is picked, rather than taking whichever the listing
        returned first.

        Args:
            name: Folder name

        Returns:
            Folder with resources and permissions populated

        Raises:
            FolderNotFoundError: If no folder matches
            AmbiguousFolderError: If several folders match and none exactly
        """
        matches = [folder for folder in self.list_folders() if folder.name.lower() == name.lower()]
        if not matches:
            raise FolderNotFoundError(name)
        if len(matches) > 1:
            exact = [folder for folder in matches if folder.name == name]
            if len(exact) != 1:
                raise AmbiguousFolderError(name, [folder.name for folder in matches])
            matches = exact

        folder = matches[0]
        folder.resources = self.list_folder_resources(folder.id)
        folder.permissions = self.get_folder_permissions(folder.id)
        logger.info(f"Resolved folder {folder.name} ({folder.id}) with {len(folder.resources)} resource(s)")
        return folder

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> Folder:
        labels = {LABEL_PARENT: parent_id} if parent_id else {}
        folder_id = self._create(KIND_FOLDER, name, labels)
        return Folder(id=folder_id, name=name, parent_id=parent_id)

    def move_folder(self, folder_id: str, parent_id: str) -> None:
        secret = self._get(folder_id, FolderNotFoundError)
        labels = dict(secret.labels)
        labels[LABEL_PARENT] = parent_id
        self._call(
            "update_secret",
            {
                "secret": {"name": self._path(folder_id), "labels": labels},
                "update_mask": {"paths": ["labels"]},
            },
        )
        logger.info(f"Moved folder {folder_id} under {parent_id}")

    def list_folder_resources(self, folder_id: str) -> List[FolderResource]:
        return [
            FolderResource(id=_secret_id(secret), name=_display_name(secret), folder_id=folder_id)
            for secret in self._list(KIND_RESOURCE, folder_id)
        ]

    def get_folder_permissions(self, folder_id: str) -> List[Permission]:
        try:
            policy = self._call("get_iam_policy", {"resource": self._path(folder_id)})
        except gcp_exceptions.NotFound as e:
            raise FolderNotFoundError(folder_id) from e

        permissions = []
        for binding in policy.bindings:
            permission_type = ROLE_PERMISSIONS.get(binding.role)
            if permission_type is None:
                continue
            for member in binding.members:
                principal, _, identity = member.partition(":")
                if principal == "user":
                    permissions.append(Permission(aro="User", aro_id=identity, type=permission_type))
                elif principal == "group":
                    permissions.append(Permission(aro="Group", aro_id=identity, type=permission_type))
        return permissions

    # Resources

    def fetch_resource_value(self, resource_id: str) -> Tuple[str, str]:
        """
        Resolve one resource's name and current value.

        Raises:
            ResourceNotFoundError: If the resource or its versions are gone
        """
        secret = self._get(resource_id, ResourceNotFoundError)
        return _display_name(secret), decode_value(self._access_latest(resource_id))

    def create_resource(self, folder_id: str, key: str, value: str) -> FolderResource:
        resource_id = self._create(KIND_RESOURCE, key, {LABEL_FOLDER: folder_id})
        self._add_version(resource_id, encode_value(value))
        return FolderResource(id=resource_id, name=key, folder_id=folder_id)

    def update_resource(self, resource_id: str, value: str) -> None:
        self._add_version(resource_id, encode_value(value))

    # Groups

    def _read_members(self, group_id: str) -> List[GroupMembership]:
        try:
            data = json.loads(self._access_latest(group_id))
        except ResourceNotFoundError:
            return []
        except json.JSONDecodeError as e:
            raise VaultError(f"Group {group_id} has malformed membership data: {e}") from e
        return [
            GroupMembership(username=member["username"], manager=bool(member.get("manager")))
            for member in data.get("members", [])
        ]

    def _write_members(self, group_id: str, members: Iterable[GroupMembership]) -> None:
        payload = {"members": [{"username": m.username, "manager": m.manager} for m in members]}
        self._add_version(group_id, json.dumps(payload, indent=2))

    def resolve_group(self, name: str) -> Group:
        """
        Find a group by name (case-insensitive, first match).

        Raises:
            GroupNotFoundError: If no group has that name
        """
        for secret in self._list(KIND_GROUP):
            if _display_name(secret).lower() == name.lower():
                group_id = _secret_id(secret)
                return Group(id=group_id, name=_display_name(secret), members=self._read_members(group_id))
        raise GroupNotFoundError(name)

    def create_group(self, name: str, memberships: Iterable[GroupMembership]) -> Group:
        members = list(memberships)
        group_id = self._create(KIND_GROUP, name)
        self._write_members(group_id, members)
        logger.info(f"Created group {name} with {len(members)} member(s)")
        return Group(id=group_id, name=name, members=members)

    def update_group_membership(self, group: Group, memberships: Iterable[GroupMembership]) -> Group:
        """
        Add members to a group, or update the manager flag of existing ones.

        Returns:
            The group with its new member list
        """
        members = {member.username: member for member in self._read_members(group.id)}
        for membership in memberships:
            members[membership.username] = membership
        self._write_members(group.id, members.values())
        group.members = list(members.values())
        return group

    def add_user_to_group(self, user: User, group: Group, manager: bool = False) -> Group:
        return self.update_group_membership(group, [GroupMembership(username=user.username, manager=manager)])

    # Users

    def list_users(self, search: str = "") -> List[User]:
        """
        List users holding permissions on any vaultsync folder.

        Args:
            search: Case-insensitive substring filter on the username
        """
        seen = {}
        for folder in self.list_folders():
            for permission in self.get_folder_permissions(folder.id):
                if permission.aro != "User":
                    continue
                if search.lower() in permission.aro_id.lower():
                    seen.setdefault(permission.aro_id, User(username=permission.aro_id))
        return sorted(seen.values(), key=lambda user: user.username)

    def resolve_user(self, email: str) -> User:
        for user in self.list_users(email):
            if user.username.lower() == email.lower():
                return user
        raise UserNotFoundError(email)

    def list_users_from_permissions(self, permissions: Iterable[Permission]) -> List[UserPermission]:
        """Collapse permissions to one entry per user with their highest access level."""
        best: Dict[str, PermissionType] = {}
        for permission in permissions:
            if permission.aro != "User":
                logger.debug(f"Skipping {permission.aro} permission for {permission.aro_id}")
                continue
            current = best.get(permission.aro_id)
            if current is None or _PERMISSION_RANK[permission.type] > _PERMISSION_RANK[current]:
                best[permission.aro_id] = permission.type
        return [UserPermission(user=User(username=name), type=kind) for name, kind in best.items()]


def encode_value(value: str) -> str:
    return json.dumps({"value": value})


def decode_value(payload: str) -> str:
    """Unwrap a resource payload. Payloads not written by vaultsync are returned as is."""
    try:
        envelope = json.loads(payload)
    except json.JSONDecodeError:
        return payload
    if isinstance(envelope, dict) and isinstance(envelope.get("value"), str):
        return envelope["value"]
    return payload
