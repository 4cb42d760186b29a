"""Tests for connection parameter resolution."""

import io

import pytest

from dbhelper.copy.errors import ResolutionError
from dbhelper.copy.models import CopyOptions, PasswordSource, PasswordSourceKind
from dbhelper.copy.resolver import (
    RawConnectionParams,
    read_password,
    resolve_connection,
    resolve_request,
)


class TestReadPassword:
    """Password source handling."""

    def test_literal(self):
        password, kind = read_password(PasswordSource.literal("s3cret"), label="source")

        assert password.get_secret_value() == "s3cret"
        assert kind == PasswordSourceKind.LITERAL

    def test_env_var(self, monkeypatch):
        monkeypatch.setenv("SRC_DB_PASSWORD", "from-env")

        password, kind = read_password(PasswordSource.env("SRC_DB_PASSWORD"), label="source")

        assert password.get_secret_value() == "from-env"
        assert kind == PasswordSourceKind.ENV

    def test_unset_env_var_raises(self, monkeypatch):
        monkeypatch.delenv("MISSING_PW", raising=False)

        with pytest.raises(ResolutionError) as excinfo:
            read_password(PasswordSource.env("MISSING_PW"), label="target")

        assert "MISSING_PW" in excinfo.value.message

    def test_stdin_reads_one_line(self):
        stdin = io.StringIO("first\nsecond\n")

        password, kind = read_password(PasswordSource.stdin(), label="source", stdin=stdin)

        assert password.get_secret_value() == "first"
        assert kind == PasswordSourceKind.STDIN
        assert stdin.readline() == "second\n"

    def test_empty_stdin_raises(self):
        with pytest.raises(ResolutionError):
            read_password(PasswordSource.stdin(), label="source", stdin=io.StringIO(""))

    def test_inherits_pgpassword(self, monkeypatch):
        monkeypatch.setenv("PGPASSWORD", "inherited")

        password, kind = read_password(PasswordSource(), label="source")

        assert password.get_secret_value() == "inherited"
        assert kind == PasswordSourceKind.ENV

    def test_no_password(self):
        password, kind = read_password(PasswordSource(), label="source")

        assert password is None
        assert kind == PasswordSourceKind.NONE


class TestResolveConnection:
    """Defaults and inheritance."""

    def test_defaults(self):
        spec = resolve_connection(RawConnectionParams(dbname="appdb"), label="source")

        assert spec.host == "localhost"
        assert spec.port == 5432
        assert spec.user == "postgres"
        assert spec.dbname == "appdb"

    def test_libpq_environment_defaults(self, monkeypatch):
        monkeypatch.setenv("PGHOST", "db.internal")
        monkeypatch.setenv("PGPORT", "6543")
        monkeypatch.setenv("PGUSER", "admin")

        spec = resolve_connection(RawConnectionParams(dbname="appdb"), label="source")

        assert (spec.host, spec.port, spec.user) == ("db.internal", 6543, "admin")

    def test_missing_dbname_raises(self):
        with pytest.raises(ResolutionError):
            resolve_connection(RawConnectionParams(), label="target")

    def test_invalid_port_raises(self):
        with pytest.raises(ResolutionError) as excinfo:
            resolve_connection(RawConnectionParams(dbname="appdb", port=70000), label="source")

        assert "port" in excinfo.value.message

    def test_port_zero_is_rejected_not_defaulted(self):
        with pytest.raises(ResolutionError) as excinfo:
            resolve_connection(RawConnectionParams(dbname="appdb", port=0), label="source")

        assert excinfo.value.message == "Invalid source port: 0"

    def test_non_numeric_pgport_raises(self, monkeypatch):
        monkeypatch.setenv("PGPORT", "abc")

        with pytest.raises(ResolutionError) as excinfo:
            resolve_connection(RawConnectionParams(dbname="appdb"), label="source")

        assert excinfo.value.message == "Invalid PGPORT: 'abc'"

    def test_explicit_port_ignores_pgport(self, monkeypatch):
        monkeypatch.setenv("PGPORT", "abc")

        spec = resolve_connection(RawConnectionParams(dbname="appdb", port=5433), label="source")

        assert spec.port == 5433

    def test_target_inherits_source_server(self):
        source = resolve_connection(
            RawConnectionParams(
                dbname="appdb",
                host="db1",
                port=5433,
                user="admin",
                password=PasswordSource.literal("pw"),
                sslmode="require",
            ),
            label="source",
        )

        target = resolve_connection(
            RawConnectionParams(dbname="appdb_copy"), label="target", defaults=source
        )

        assert (target.host, target.port, target.user) == ("db1", 5433, "admin")
        assert target.sslmode == "require"
        assert target.password.get_secret_value() == "pw"

    def test_password_not_reused_for_other_server(self):
        source = resolve_connection(
            RawConnectionParams(dbname="appdb", host="db1", password=PasswordSource.literal("pw")),
            label="source",
        )

        target = resolve_connection(
            RawConnectionParams(dbname="appdb", host="db2"), label="target", defaults=source
        )

        assert target.password is None


def test_resolve_request_detects_same_server():
    """Host comparison is case-insensitive."""
    request = resolve_request(
        RawConnectionParams(dbname="appdb", host="DB1.example.com"),
        RawConnectionParams(dbname="appdb_copy", host="db1.example.com"),
        CopyOptions(),
    )

    assert request.same_server
    assert not request.same_database


def test_resolve_request_applies_connection_timeout():
    """The connection timeout is applied to both sides."""
    request = resolve_request(
        RawConnectionParams(dbname="appdb"),
        RawConnectionParams(dbname="appdb_copy"),
        CopyOptions(connection_timeout=15),
    )

    assert request.source.connect_timeout == 15
    assert request.target.connect_timeout == 15
    assert request.target.libpq_env()["PGCONNECT_TIMEOUT"] == "15"


def test_secrets_stay_out_of_argv():
    """Passwords travel in the environment only."""
    spec = resolve_connection(
        RawConnectionParams(dbname="appdb", password=PasswordSource.literal("hunter2")),
        label="source",
    )

    assert "hunter2" not in spec.connection_args()
    assert "hunter2" not in spec.describe()
    assert spec.libpq_env()["PGPASSWORD"] == "hunter2"
