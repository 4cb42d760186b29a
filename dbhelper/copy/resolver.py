"""Connection parameter resolution.

Turns raw flag/env values for the source and target into ConnectionSpec
values. The target inherits host, port and user from the source when they
are not given (single-server form).
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from loguru import logger
from pydantic import SecretStr

from .errors import ResolutionError
from .models import (
    DEFAULT_PORT,
    ConnectionSpec,
    CopyOptions,
    CopyRequest,
    PasswordSource,
    PasswordSourceKind,
)


@dataclass(frozen=True)
class RawConnectionParams:
    """Unresolved connection parameters as given on the command line."""

    dbname: str | None = None
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: PasswordSource = PasswordSource()
    sslmode: str | None = None
    sslcert: Path | None = None
    sslkey: Path | None = None


def read_password(
    source: PasswordSource,
    *,
    label: str,
    stdin: TextIO | None = None,
) -> tuple[SecretStr | None, PasswordSourceKind]:
    """Read a password from its source.

    With no explicit source, ``PGPASSWORD`` is inherited when set; otherwise
    libpq falls back to ``~/.pgpass``.

    Raises:
        ResolutionError: If the environment variable is unset or stdin is empty
    """
    if source.kind == PasswordSourceKind.LITERAL and source.value is not None:
        return source.value, PasswordSourceKind.LITERAL

    if source.kind == PasswordSourceKind.ENV and source.value is not None:
        var_name = source.value.get_secret_value()
        password = os.environ.get(var_name)
        if not password:
            raise ResolutionError(
                f"Environment variable {var_name} is not set",
                details=f"Needed for the {label} password",
            )
        logger.debug(f"Using {label} password from {var_name}")
        return SecretStr(password), PasswordSourceKind.ENV

    if source.kind == PasswordSourceKind.STDIN:
        stream = stdin or sys.stdin
        line = stream.readline().rstrip("\r\n")
        if not line:
            raise ResolutionError(f"No {label} password provided on stdin")
        return SecretStr(line), PasswordSourceKind.STDIN

    inherited = os.environ.get("PGPASSWORD")
    if inherited:
        return SecretStr(inherited), PasswordSourceKind.ENV
    return None, PasswordSourceKind.NONE


def _environment_port() -> int:
    value = os.environ.get("PGPORT")
    if not value:
        return DEFAULT_PORT
    try:
        return int(value)
    except ValueError:
        raise ResolutionError(f"Invalid PGPORT: {value!r}") from None


def resolve_connection(
    raw: RawConnectionParams,
    *,
    label: str,
    connect_timeout: int | None = None,
    defaults: ConnectionSpec | None = None,
    stdin: TextIO | None = None,
) -> ConnectionSpec:
    """Resolve one side of a copy into a ConnectionSpec.

    Args:
        raw: Parameters from flags/env
        label: "source" or "target", used in messages
        connect_timeout: Connection timeout in seconds
        defaults: Spec to inherit host/port/user/TLS settings from
        stdin: Stream to read a stdin password from

    Raises:
        ResolutionError: If a required value is missing or a password
            source cannot be read
    """
    if not raw.dbname:
        raise ResolutionError(f"A {label} database name is required")

    host = raw.host or (defaults.host if defaults else None)
    host = host or os.environ.get("PGHOST") or "localhost"
    port = raw.port if raw.port is not None else (defaults.port if defaults else None)
    if port is None:
        port = _environment_port()
    user = raw.user or (defaults.user if defaults else None)
    user = user or os.environ.get("PGUSER") or "postgres"

    if port <= 0 or port > 65535:
        raise ResolutionError(f"Invalid {label} port: {port}")

    password, password_kind = read_password(raw.password, label=label, stdin=stdin)
    if password is None and defaults is not None and _same_identity(
        defaults, host, port, user
    ):
        password, password_kind = defaults.password, defaults.password_source

    return ConnectionSpec(
        host=host,
        port=port,
        user=user,
        password=password,
        password_source=password_kind,
        dbname=raw.dbname,
        sslmode=raw.sslmode or (defaults.sslmode if defaults else None),
        sslcert=raw.sslcert or (defaults.sslcert if defaults else None),
        sslkey=raw.sslkey or (defaults.sslkey if defaults else None),
        connect_timeout=connect_timeout,
    )


def _same_identity(spec: ConnectionSpec, host: str, port: int, user: str) -> bool:
    return spec.server_identity == (host.strip().lower(), port, user)


def resolve_request(
    source: RawConnectionParams,
    target: RawConnectionParams,
    options: CopyOptions,
    *,
    stdin: TextIO | None = None,
) -> CopyRequest:
    """Resolve source and target and bundle them with the options.

    The target reuses the source password when both point at the same
    server identity and no target password source was given.
    """
    source_spec = resolve_connection(
        source,
        label="source",
        connect_timeout=options.connection_timeout,
        stdin=stdin,
    )
    target_spec = resolve_connection(
        target,
        label="target",
        connect_timeout=options.connection_timeout,
        defaults=source_spec,
        stdin=stdin,
    )

    request = CopyRequest(source=source_spec, target=target_spec, options=options)
    logger.debug(
        f"Resolved source={source_spec.describe()} target={target_spec.describe()} "
        f"same_server={request.same_server} same_database={request.same_database}"
    )
    return request
