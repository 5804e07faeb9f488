"""Tests for the env file store and its line-preserving merge."""
import os
import stat
from unittest import mock

import pytest

from vaultsync.secrets.domains import env_file
from vaultsync.secrets.domains.env_file import (
    EnvFileStore,
    merge_lines,
    parse_env_line,
    strip_quotes,
)
from vaultsync.secrets.domains.errors import LocalFileError
from vaultsync.secrets.domains.models import LineKind, SecretRecord, to_secret_set


@pytest.fixture
def env_path(tmp_path):
    return tmp_path / ".env"


def write_env(path, content):
    path.write_text(content, encoding="utf-8")
    return path


def secret_set(**values):
    return to_secret_set(SecretRecord(key=k, value=v) for k, v in values.items())


class TestStripQuotes:
    """Test suite for quote normalization."""

    @pytest.mark.parametrize("raw, expected", [
        ('"value"', "value"),
        ("'value'", "value"),
        ("value", "value"),
        ('"value\'', '"value\''),
        ('""', '""'),
        ('"a"', "a"),
        ('""x""', '"x"'),
    ])
    def test_strips_one_matching_layer(self, raw, expected):
        assert strip_quotes(raw) == expected


class TestParseEnvLine:
    """Test suite for line classification."""

    def test_blank_and_comment_lines(self):
        assert parse_env_line("").kind == LineKind.BLANK
        assert parse_env_line("   ").kind == LineKind.BLANK
        assert parse_env_line("# comment").kind == LineKind.COMMENT
        assert parse_env_line("   # indented comment").kind == LineKind.COMMENT

    def test_assignment_splits_on_first_equals(self):
        line = parse_env_line("TOKEN=abc=def==")
        assert line.kind == LineKind.ASSIGNMENT
        assert line.key == "TOKEN"
        assert line.raw_value == "abc=def=="
        assert line.has_explicit_value is True

    def test_whitespace_around_key_and_value_is_trimmed(self):
        line = parse_env_line("  KEY  =  value  ")
        assert line.key == "KEY"
        assert line.raw_value == "value"
        assert line.raw == "  KEY  =  value  "

    def test_bare_key_has_no_explicit_value(self):
        line = parse_env_line("ANOTHER_KEY")
        assert line.kind == LineKind.ASSIGNMENT
        assert line.key == "ANOTHER_KEY"
        assert line.has_explicit_value is False

    def test_empty_value_is_explicit(self):
        line = parse_env_line("EMPTY=")
        assert line.raw_value == ""
        assert line.has_explicit_value is True

    def test_empty_key_is_opaque(self):
        assert parse_env_line("=no_key").kind == LineKind.OPAQUE
        assert parse_env_line("   = spaced").kind == LineKind.OPAQUE

    def test_inner_whitespace_stays_in_key(self):
        line = parse_env_line(" MY KEY = value")
        assert line.kind == LineKind.ASSIGNMENT
        assert line.key == "MY KEY"
        assert line.raw_value == "value"


class TestMergeLines:
    """Test suite for the pure merge step."""

    def test_keys_are_case_sensitive(self):
        lines = [parse_env_line("api_key=old")]
        assert merge_lines(lines, {"API_KEY": "new"}) == ["api_key=old", 'API_KEY="new"']

    def test_duplicate_key_only_first_occurrence_is_rewritten(self):
        lines = [parse_env_line("KEY=a"), parse_env_line("KEY=b")]
        assert merge_lines(lines, {"KEY": "c"}) == ['KEY="c"', "KEY=b"]


class TestMerge:
    """Test suite for EnvFileStore.merge."""

    def test_scenario_updates_and_appends(self, env_path):
        write_env(env_path, '# comment\nAPI_KEY="old"\nDB_HOST=localhost\n')

        EnvFileStore(env_path).merge(secret_set(API_KEY="new", PORT="5432"))

        assert env_path.read_text() == '# comment\nAPI_KEY="new"\nDB_HOST=localhost\nPORT="5432"\n'

    def test_empty_file_gets_all_keys(self, env_path):
        write_env(env_path, "")

        EnvFileStore(env_path).merge(secret_set(API_KEY="secret123", DB_PASSWORD="password456"))

        lines = env_path.read_text().splitlines()
        assert sorted(lines) == ['API_KEY="secret123"', 'DB_PASSWORD="password456"']

    def test_missing_file_is_created(self, env_path):
        EnvFileStore(env_path).merge(secret_set(KEY="value"))

        assert env_path.read_text() == 'KEY="value"\n'

    def test_created_file_is_private(self, env_path):
        EnvFileStore(env_path).merge(secret_set(KEY="value"))

        assert stat.S_IMODE(os.stat(env_path).st_mode) == env_file.FILE_MODE

    @pytest.mark.parametrize("existing", ['KEY="v"', "KEY='v'", "KEY=v"])
    def test_equal_value_in_any_quote_style_is_kept(self, env_path, existing):
        write_env(env_path, f"{existing}\n")

        EnvFileStore(env_path).merge(secret_set(KEY="v"))

        assert env_path.read_text() == f"{existing}\n"

    @pytest.mark.parametrize("existing", ['KEY="v"', "KEY='v'", "KEY=v"])
    def test_changed_value_is_rewritten_double_quoted(self, env_path, existing):
        write_env(env_path, f"{existing}\n")

        EnvFileStore(env_path).merge(secret_set(KEY="v2"))

        assert env_path.read_text() == 'KEY="v2"\n'

    def test_bare_key_is_always_rewritten(self, env_path):
        write_env(env_path, "FIRST=1\nANOTHER_KEY\nLAST=3\n")

        EnvFileStore(env_path).merge(secret_set(ANOTHER_KEY=""))

        assert env_path.read_text() == 'FIRST=1\nANOTHER_KEY=""\nLAST=3\n'

    def test_value_containing_equals(self, env_path):
        write_env(env_path, 'URL="postgres://u:p@h/db?sslmode=require"\n')

        EnvFileStore(env_path).merge(secret_set(URL="postgres://u:p@h/db?sslmode=require"))

        assert env_path.read_text() == 'URL="postgres://u:p@h/db?sslmode=require"\n'

    def test_preserves_comments_blanks_and_unrelated_entries(self, env_path):
        content = (
            "# header\n"
            "\n"
            "API_KEY=\"keep_this\"\n"
            "   # indented\n"
            "DB_HOST=localhost\n"
            "=opaque line\n"
            "DB_PORT=5432\n"
            "\n"
            "SECRET_TOKEN='also_keep_this'\n"
        )
        write_env(env_path, content)

        EnvFileStore(env_path).merge(secret_set(DB_HOST="newhost"))

        assert env_path.read_text() == content.replace("DB_HOST=localhost", 'DB_HOST="newhost"')

    def test_merge_is_idempotent(self, env_path):
        write_env(env_path, "# c\nA=1\nB\n\nC='3'")
        desired = secret_set(A="10", B="2", C="3", D="4")
        store = EnvFileStore(env_path)

        store.merge(desired)
        first = env_path.read_bytes()
        store.merge(desired)

        assert env_path.read_bytes() == first

    def test_key_with_whitespace_is_merged_once(self, env_path):
        store = EnvFileStore(env_path)

        store.merge(secret_set(**{"MY KEY": "v"}))
        store.merge(secret_set(**{"MY KEY": "v"}))

        assert env_path.read_text() == 'MY KEY="v"\n'
        assert store.fetch_all() == [SecretRecord("MY KEY", "v")]

    def test_crlf_file_is_rewritten_with_lf(self, env_path):
        env_path.write_bytes(b"# c\r\nKEEP=1\r\nKEY=old\r\n")

        EnvFileStore(env_path).merge(secret_set(KEY="new", ADDED="x"))

        assert env_path.read_bytes() == b'# c\nKEEP=1\nKEY="new"\nADDED="x"\n'

    def test_accepts_records_iterable(self, env_path):
        EnvFileStore(env_path).set_secrets([SecretRecord("A", "1"), SecretRecord("A", "2")])

        assert env_path.read_text() == 'A="2"\n'

    def test_missing_directory_is_an_error(self, tmp_path):
        store = EnvFileStore(tmp_path / "missing" / ".env")

        with pytest.raises(LocalFileError):
            store.merge(secret_set(KEY="value"))

    def test_failed_replace_keeps_original_and_cleans_up(self, env_path):
        write_env(env_path, "KEY=old\n")

        with mock.patch.object(env_file.os, "replace", side_effect=OSError("disk full")):
            with pytest.raises(LocalFileError) as exc_info:
                EnvFileStore(env_path).merge(secret_set(KEY="new"))

        assert "disk full" in str(exc_info.value)
        assert env_path.read_text() == "KEY=old\n"
        assert [p.name for p in env_path.parent.iterdir()] == [".env"]

    def test_unreadable_file_is_an_error(self, env_path):
        env_path.write_bytes(b"KEY=\xff\xfe\n")

        with pytest.raises(LocalFileError):
            EnvFileStore(env_path).merge(secret_set(KEY="value"))


class TestLoadAndFetch:
    """Test suite for reading env files."""

    def test_load_missing_file_is_empty(self, env_path):
        assert EnvFileStore(env_path).load() == []

    def test_load_keeps_line_order(self, env_path):
        write_env(env_path, "# c\nA=1\n\nB\n")

        kinds = [line.kind for line in EnvFileStore(env_path).load()]

        assert kinds == [LineKind.COMMENT, LineKind.ASSIGNMENT, LineKind.BLANK, LineKind.ASSIGNMENT]

    def test_fetch_all_unquotes_and_skips_bare_keys(self, env_path):
        write_env(env_path, "# c\nA=\"1\"\nB='2'\nC=3\nBARE\nA=4\n")

        records = EnvFileStore(env_path).fetch_all()

        assert to_secret_set(records) == secret_set(A="4", B="2", C="3")

    def test_fetch_all_follows_dotenv_rules(self, env_path):
        write_env(
            env_path,
            "export API_KEY=abc\n"
            "PORT=5432 # db port\n"
            "URL=\"postgres://u:p@h/db?sslmode=require\"\n"
            "REF=${HOME}/x\n"
            "EMPTY=\n"
        )

        records = EnvFileStore(env_path).fetch_all()

        assert to_secret_set(records) == secret_set(
            API_KEY="abc",
            PORT="5432",
            URL="postgres://u:p@h/db?sslmode=require",
            REF="${HOME}/x",
            EMPTY="",
        )

    def test_fetch_all_crlf(self, env_path):
        env_path.write_bytes(b"A=1\r\nB='2'\r\n")

        assert to_secret_set(EnvFileStore(env_path).fetch_all()) == secret_set(A="1", B="2")
