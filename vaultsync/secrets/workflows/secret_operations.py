"""Workflows for pulling, pushing and sharing a project's secrets."""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..domains.deadline import DEFAULT_TIMEOUT, Deadline
from ..domains.errors import FolderNotFoundError, GroupNotFoundError, PushError
from ..domains.models import (
    Folder,
    Group,
    GroupMembership,
    PermissionType,
    ProjectConfig,
    UserPermission,
    to_secret_set,
)
from ..domains.stores import SecretStore, get_store
from ..domains.vault_client import DEFAULT_ROOT_FOLDER, VaultClient
from .reconciler import ApplyReport, apply_plan, plan
from .retriever import ConcurrentRetriever, collect

logger = logging.getLogger(__name__)


@dataclass
class PullReport:
    folder: str
    fetched: int
    failed: int


def pull_secrets(
    vault: VaultClient,
    project: ProjectConfig,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    store: Optional[SecretStore] = None,
) -> PullReport:
    """
    Copy every secret of the project's folder into its local store.

    Args:
        vault: Vault client
        project: Resolved project configuration
        timeout: Budget in seconds for the whole pull
        store: Local store override (selected from project.type when None)

    Returns:
        PullReport with fetched and failed counts

    Raises:
        FolderNotFoundError: If the folder does not exist
        OperationTimeoutError: If the budget runs out. Nothing is written.
        LocalFileError / ExternalToolError: If writing locally fails
    """
    deadline = Deadline(timeout, operation=f"pull of {project.folder}")
    vault = vault.bounded(deadline)
    store = store or get_store(project)

    folder = vault.resolve_folder(project.folder)
    deadline.remaining()

    results = ConcurrentRetriever(vault).fetch_results(folder.resources, deadline)
    secrets, failures = collect(results)

    store.set_secrets(secrets.values())
    logger.info(f"Pulled {len(secrets)} secret(s) from {folder.name} into {store!r}")
    return PullReport(folder=folder.name, fetched=len(secrets), failed=len(failures))


def push_secrets(
    vault: VaultClient,
    project: ProjectConfig,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    create_folder: bool = False,
    store: Optional[SecretStore] = None,
) -> ApplyReport:
    """
    Create or update a vault resource for every local secret.

    Args:
        vault: Vault client
        project: Resolved project configuration
        timeout: Budget in seconds for the whole push
        create_folder: Create the folder when it does not exist
        store: Local store override (selected from project.type when None)

    Returns:
        ApplyReport listing created and updated keys

    Raises:
        FolderNotFoundError: If the folder is missing and create_folder is False
        PushError: If any key failed to push (the others are still pushed)
        OperationTimeoutError: If the budget runs out; later keys are not pushed
    """
    deadline = Deadline(timeout, operation=f"push to {project.folder}")
    vault = vault.bounded(deadline)
    store = store or get_store(project)

    secrets = to_secret_set(store.fetch_all())
    try:
        folder = vault.resolve_folder(project.folder)
    except FolderNotFoundError:
        if not create_folder:
            raise
        logger.info(f"Creating folder {project.folder}")
        folder = vault.create_folder(project.folder)

    actions = plan(secrets, folder)
    report = apply_plan(vault, actions, deadline)
    logger.info(
        f"Pushed to {folder.name}: {len(report.created)} created, {len(report.updated)} updated"
    )
    if report.failed:
        raise PushError(report.failed_keys)
    return report


def _require_team(team: str) -> str:
    if not team:
        raise ValueError("No team configured. Set 'team' in .vaultsync.yml or pass --team")
    return team


def list_team_members(vault: VaultClient, team: str) -> List[GroupMembership]:
    return vault.resolve_group(_require_team(team)).members


def add_team_member(vault: VaultClient, team: str, email: str, manager: bool = False) -> Group:
    """
    Add a user to the team group.

    Raises:
        GroupNotFoundError: If the team group does not exist
        UserNotFoundError: If no user with that email has vault access
    """
    group = vault.resolve_group(_require_team(team))
    user = vault.resolve_user(email)
    group = vault.add_user_to_group(user, group, manager=manager)
    logger.info(f"Added {user.username} to {group.name}")
    return group


@dataclass
class MigrationPlan:
    """What a migration will change. Built before anything is changed."""
    folder: Folder
    team: str
    root_folder: str
    group: Optional[Group] = None
    root: Optional[Folder] = None
    members: List[UserPermission] = field(default_factory=list)

    @property
    def create_group(self) -> bool:
        return self.group is None

    @property
    def create_root(self) -> bool:
        return self.root is None

    @property
    def memberships(self) -> List[GroupMembership]:
        return [
            GroupMembership(username=member.user.username, manager=member.type == PermissionType.OWNER)
            for member in self.members
        ]


def plan_migration(
    vault: VaultClient, project: ProjectConfig, root_folder: str = DEFAULT_ROOT_FOLDER
) -> MigrationPlan:
    """
    Work out how to move a project folder under the root folder and share it
    with the team group.

    Users with permissions on the folder become group members; owners become
    group managers.
    """
    team = _require_team(project.team)
    folder = vault.resolve_folder(project.folder)

    try:
        group = vault.resolve_group(team)
    except GroupNotFoundError:
        group = None

    try:
        root = vault.resolve_folder(root_folder)
    except FolderNotFoundError:
        root = None

    return MigrationPlan(
        folder=folder,
        team=team,
        root_folder=root_folder,
        group=group,
        root=root,
        members=vault.list_users_from_permissions(folder.permissions),
    )


def run_migration(vault: VaultClient, migration: MigrationPlan) -> Group:
    """Apply a migration plan. Returns the team group."""
    if migration.create_group:
        group = vault.create_group(migration.team, migration.memberships)
    else:
        group = vault.update_group_membership(migration.group, migration.memberships)

    root = migration.root or vault.create_folder(migration.root_folder)
    vault.move_folder(migration.folder.id, root.id)
    logger.info(f"Migrated {migration.folder.name} to {root.name}/{migration.folder.name}")
    return group
