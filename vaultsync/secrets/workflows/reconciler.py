"""Push reconciliation: decide create or update per key, then apply."""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Tuple, Union

from ..domains.deadline import Deadline
from ..domains.errors import AuthFailureError, OperationTimeoutError, VaultSyncError
from ..domains.models import Folder, SecretRecord, SecretSet
from ..domains.vault_client import VaultClient

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass(frozen=True)
class PlannedAction:
    action: ActionType
    key: str
    value: str
    folder_id: str
    resource_id: Optional[str] = None


@dataclass
class ApplyReport:
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    failed: List[Tuple[PlannedAction, Exception]] = field(default_factory=list)

    @property
    def failed_keys(self) -> List[str]:
        return [action.key for action, _ in self.failed]


def find_resource_id(folder: Folder, key: str) -> Optional[str]:
    """Case-sensitive exact name match; the first matching resource wins."""
    for resource in folder.resources:
        if resource.name == key:
            return resource.id
    return None


def plan(local: Union[SecretSet, Iterable[SecretRecord]], folder: Folder) -> List[PlannedAction]:
    """
    Plan the push of local secrets into a folder.

    Keys already in the folder become updates, the rest become creates.
    Remote resources missing locally are left alone.

    Args:
        local: SecretSet or records to push
        folder: Target folder with its resources loaded

    Returns:
        One action per local key
    """
    records = local.values() if isinstance(local, Mapping) else local
    actions = []
    for record in records:
        resource_id = find_resource_id(folder, record.key)
        if resource_id:
            actions.append(PlannedAction(ActionType.UPDATE, record.key, record.value, folder.id, resource_id))
        else:
            actions.append(PlannedAction(ActionType.CREATE, record.key, record.value, folder.id))
    return actions


def apply_plan(
    vault: VaultClient, actions: Iterable[PlannedAction], deadline: Optional[Deadline] = None
) -> ApplyReport:
    """
    Execute planned actions one by one.

    A failing action is recorded and the remaining actions still run.

    Raises:
        AuthFailureError: If the vault rejects our credentials
        OperationTimeoutError: If the deadline expires before or during an action
    """
    deadline = deadline or Deadline(None)
    report = ApplyReport()
    for action in actions:
        deadline.remaining()
        try:
            if action.action == ActionType.UPDATE:
                vault.update_resource(action.resource_id, action.value)
                report.updated.append(action.key)
            else:
                vault.create_resource(action.folder_id, action.key, action.value)
                report.created.append(action.key)
        except (AuthFailureError, OperationTimeoutError):
            raise
        except VaultSyncError as e:
            logger.error(f"Failed to {action.action.value} secret {action.key}: {e}")
            report.failed.append((action, e))
    return report
