"""Env file store with a line-preserving merge.

Pulling secrets into an env file only touches the lines it owns: assignments
whose key is being pulled. Comments, blank lines, ordering and unrelated
entries survive byte for byte, and keys the file does not have yet are
appended at the end.
"""
import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Mapping, Union

from dotenv.parser import parse_stream

from .errors import LocalFileError
from .models import EnvLine, LineKind, SecretRecord, SecretSet, to_secret_set
from .stores import SecretStore

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = ".env"
FILE_MODE = 0o600


def strip_quotes(value: str) -> str:
    """
    Remove one layer of matching double or single quotes.

    Values of two characters or fewer are returned unchanged, so ``""`` stays
    ``""``. Quotes are not stripped recursively.
    """
    if len(value) <= 2:
        return value
    if value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def format_env_line(key: str, value: str) -> str:
    return f'{key}="{value}"'


def parse_env_line(line: str) -> EnvLine:
    """
    Classify a single line of an env file.

    Args:
        line: Line text without its trailing newline

    Returns:
        EnvLine carrying the original text. Assignments are split on the
        first ``=`` with whitespace trimmed from key and value; inner
        whitespace stays part of the key. A line with no ``=`` is a bare
        key (``has_explicit_value=False``). A line with an empty key is
        OPAQUE.
    """
    stripped = line.strip()
    if not stripped:
        return EnvLine(kind=LineKind.BLANK, raw=line)
    if stripped.startswith("#"):
        return EnvLine(kind=LineKind.COMMENT, raw=line)

    key, sep, value = stripped.partition("=")
    key = key.strip()
    if not key:
        return EnvLine(kind=LineKind.OPAQUE, raw=line)

    return EnvLine(
        kind=LineKind.ASSIGNMENT,
        raw=line,
        key=key,
        raw_value=value.strip(),
        has_explicit_value=bool(sep),
    )


def should_update(line: EnvLine, desired_value: str) -> bool:
    # Bare keys are always treated as stale
    if not line.has_explicit_value:
        return True
    return strip_quotes(line.raw_value) != desired_value


def merge_lines(lines: Iterable[EnvLine], desired: Mapping[str, str]) -> List[str]:
    """
    Merge desired key/values into parsed lines.

    Args:
        lines: Parsed lines of the current file, in order
        desired: Key -> value to make present in the output

    Returns:
        Output lines (without newlines). Existing lines keep their order;
        keys missing from the file are appended after them.
    """
    remaining = dict(desired)
    output = []
    for line in lines:
        if not line.is_assignment or line.key not in remaining:
            output.append(line.raw)
            continue

        value = remaining.pop(line.key)
        if should_update(line, value):
            output.append(format_env_line(line.key, value))
        else:
            output.append(line.raw)

    for key, value in remaining.items():
        output.append(format_env_line(key, value))

    return output


def _split_lines(content: str) -> List[str]:
    if not content:
        return []
    lines = content.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


class EnvFileStore(SecretStore):
    """Secrets kept in a KEY=value env file."""

    def __init__(self, path: Union[str, Path] = DEFAULT_ENV_FILE):
        self.path = Path(path or DEFAULT_ENV_FILE)

    def __repr__(self):
        return f"EnvFileStore({str(self.path)!r})"

    def _read_text(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"Env file {self.path} does not exist, treating as empty")
            return ""
        except (OSError, UnicodeDecodeError) as e:
            raise LocalFileError(f"Failed to read env file {self.path}: {e}") from e

    def load(self) -> List[EnvLine]:
        """
        Read and classify every line of the env file.

        Returns:
            Parsed lines in file order, or an empty list if the file is missing

        Raises:
            LocalFileError: If the file exists but cannot be read
        """
        return [parse_env_line(line) for line in _split_lines(self._read_text())]

    def merge(self, secrets: Union[SecretSet, Iterable[SecretRecord]]) -> None:
        """
        Merge secrets into the env file, replacing it atomically.

        Args:
            secrets: SecretSet or records to make present in the file

        Raises:
            LocalFileError: If the file cannot be read or the new content
                cannot be written. The original file is left untouched.
        """
        if not isinstance(secrets, Mapping):
            secrets = to_secret_set(secrets)
        desired = {key: record.value for key, record in secrets.items()}

        output = merge_lines(self.load(), desired)
        content = "".join(f"{line}\n" for line in output)
        self._replace(content)
        logger.info(f"Merged {len(desired)} secret(s) into {self.path}")

    def _replace(self, content: str) -> None:
        directory = self.path.parent
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(directory)
            )
        except OSError as e:
            raise LocalFileError(f"Failed to create temporary file in {directory}: {e}") from e

        # mkstemp creates the file with FILE_MODE permissions
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.debug(f"Could not remove temporary file {tmp_name}")
            raise LocalFileError(f"Failed to write env file {self.path}: {e}") from e

    def fetch_all(self) -> List[SecretRecord]:
        """
        Read the env file's values for pushing.

        Values are parsed with python-dotenv: ``export`` prefixes, quoting,
        escapes and inline comments follow dotenv rules, and ``${VAR}`` is
        kept literally. Lines dotenv rejects, such as keys with inner
        whitespace written by a pull, fall back to the merge parser. Bare
        keys are skipped and later duplicates win.

        Raises:
            LocalFileError: If the file exists but cannot be read
        """
        records = {}
        for binding in parse_stream(io.StringIO(self._read_text())):
            if binding.error:
                line = parse_env_line(binding.original.string.strip())
                if not line.is_assignment or not line.has_explicit_value:
                    logger.warning(
                        f"Skipping unparseable line {binding.original.line} in {self.path}"
                    )
                    continue
                key, value = line.key, strip_quotes(line.raw_value)
            elif binding.key is None:
                continue
            elif binding.value is None:
                logger.debug(f"Skipping bare key {binding.key} in {self.path}")
                continue
            else:
                key, value = binding.key, binding.value
            records[key] = SecretRecord(key=key, value=value)
        return list(records.values())

    def set_secrets(self, records: Iterable[SecretRecord]) -> None:
        self.merge(to_secret_set(records))
