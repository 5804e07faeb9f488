"""Per-project secrets kept by an external tool (dotnet user-secrets)."""
import logging
import subprocess
from typing import Iterable, List, Optional, Sequence

from .errors import ExternalToolError
from .models import SecretRecord, records_from_lines
from .stores import SecretStore

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = ("dotnet", "user-secrets")
NO_SECRETS_SENTINEL = "No secrets configured"


def parse_list_output(text: str) -> List[str]:
    """
    Split ``list`` output into secret lines.

    Args:
        text: Raw stdout of the list verb

    Returns:
        Non-empty lines, or an empty list when the first line is the
        "No secrets configured" sentinel
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines or NO_SECRETS_SENTINEL in lines[0]:
        return []
    return lines


class ExternalProjectStore(SecretStore):
    """
    Secrets stored by an external per-project CLI.

    The tool is invoked as ``<command> init|list`` or
    ``<command> set -- KEY VALUE``, with ``--project PATH`` placed after the
    verb when a project path is configured. Operands follow ``--`` so a
    value starting with ``-`` is not read as an option.
    """

    def __init__(self, project_path: str = "", command: Optional[Sequence[str]] = None):
        self.project_path = project_path or ""
        self.command = tuple(command or DEFAULT_COMMAND)

    def __repr__(self):
        return f"ExternalProjectStore({self.project_path!r})"

    def _args(self, verb: str, *operands: str) -> List[str]:
        args = [*self.command, verb]
        if self.project_path:
            args += ["--project", self.project_path]
        if operands:
            args += ["--", *operands]
        return args

    def _run(self, verb: str, *operands: str) -> str:
        args = self._args(verb, *operands)
        # Never echo secret values into errors or logs
        label = " ".join([*self.command, verb])
        try:
            result = subprocess.run(args, capture_output=True, text=True, check=False)
        except OSError as e:
            raise ExternalToolError(f"Failed to run {label}: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            logger.error(f"Error running {label}: {detail}")
            raise ExternalToolError(f"{label} exited with status {result.returncode}: {detail}")
        return result.stdout

    def init_project(self) -> None:
        output = self._run("init")
        logger.info(output.strip())

    def set_one(self, key: str, value: str) -> None:
        self._run("set", key, value)

    def list(self) -> List[str]:
        """Return raw ``Key = Value`` lines for the project."""
        return parse_list_output(self._run("list"))

    def fetch_all(self) -> List[SecretRecord]:
        return records_from_lines(self.list())

    def set_secrets(self, records: Iterable[SecretRecord]) -> None:
        """
        Initialize the project and set every secret.

        A failing key does not stop the others.

        Raises:
            ExternalToolError: If init fails, or naming every key that failed
        """
        self.init_project()

        failed = []
        for record in records:
            try:
                self.set_one(record.key, record.value)
            except ExternalToolError as e:
                logger.warning(f"Failed to set {record.key}: {e}")
                failed.append(record.key)

        if failed:
            raise ExternalToolError(f"Failed to set secrets: {', '.join(failed)}")
