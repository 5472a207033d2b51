from __future__ import annotations

import pytest

from kopia_mover.errors import IdentityConfigurationError
from kopia_mover.identity import (
    DEFAULT_IDENTITY,
    MAX_USERNAME_LENGTH,
    generate_hostname,
    generate_username,
    resolve_destination_identity,
    validate_destination_identity,
)
from kopia_mover.models import Identity


@pytest.mark.parametrize("override", ["my user!", "Ünïcode@host", "a" * 80])
def test_generate_username_with_override_returns_override_verbatim(override: str) -> None:
    assert generate_username(override, "app", "ns") == override


def test_generate_hostname_with_override_returns_override_verbatim() -> None:
    assert generate_hostname("weird_host name", "pvc", "ns", "app") == "weird_host name"


def test_generate_username_with_empty_override_falls_back_to_object_name() -> None:
    assert generate_username("", "webapp", "prod") == "webapp"


def test_generate_username_with_invalid_characters_strips_them_and_keeps_underscores() -> None:
    assert generate_username(None, "my.app_v2!", "ns") == "myapp_v2"


@pytest.mark.parametrize("object_name", ["!!!", "...", "---", "ñ"])
def test_generate_username_with_only_invalid_characters_returns_default(object_name: str) -> None:
    assert generate_username(None, object_name, "ns") == DEFAULT_IDENTITY


def test_generate_username_with_long_name_truncates_and_trims_separators() -> None:
    name = "a" * (MAX_USERNAME_LENGTH - 1) + "-bbbb"

    username = generate_username(None, name, "ns")

    assert len(username) <= MAX_USERNAME_LENGTH
    assert username == "a" * (MAX_USERNAME_LENGTH - 1)


def test_generate_username_ignores_namespace() -> None:
    assert generate_username(None, "db", "team-a") == generate_username(None, "db", "team-b")


def test_generate_hostname_with_namespace_only_ignores_pvc_and_object_name() -> None:
    assert generate_hostname(None, "data-pvc", "prod", "webapp") == "prod"
    assert generate_hostname(None, "other-pvc", "prod", "other") == "prod"


def test_generate_hostname_with_underscores_maps_them_to_hyphens() -> None:
    assert generate_hostname(None, None, "team_a.prod", "app") == "team-a.prod"


def test_generate_hostname_with_edge_separators_trims_them() -> None:
    hostname = generate_hostname(None, None, "_.team.", "app")

    assert hostname == "team"
    assert not hostname.startswith(("-", "."))
    assert not hostname.endswith(("-", "."))


def test_generate_hostname_with_only_invalid_characters_returns_default() -> None:
    assert generate_hostname(None, None, "@@@", "app") == DEFAULT_IDENTITY


def test_resolve_destination_identity_with_source_identity_uses_source_name_and_namespace() -> None:
    identity = resolve_destination_identity(
        username=None,
        hostname=None,
        destination_name="restore",
        destination_namespace="dr",
        source_name="webapp",
        source_namespace="prod",
    )

    assert identity == Identity(username="webapp", hostname="prod")


def test_resolve_destination_identity_with_source_name_only_defaults_to_destination_namespace() -> None:
    identity = resolve_destination_identity(
        username=None,
        hostname=None,
        destination_name="restore",
        destination_namespace="dr",
        source_name="webapp",
    )

    assert identity == Identity(username="webapp", hostname="dr")


def test_resolve_destination_identity_with_explicit_values_wins_over_source_identity() -> None:
    identity = resolve_destination_identity(
        username="custom-user",
        hostname="custom-host",
        destination_name="restore",
        destination_namespace="dr",
        source_name="webapp",
        source_namespace="prod",
    )

    assert str(identity) == "custom-user@custom-host"


def test_resolve_destination_identity_without_hints_uses_destination_metadata() -> None:
    identity = resolve_destination_identity(
        username=None,
        hostname=None,
        destination_name="restore",
        destination_namespace="dr",
    )

    assert identity == Identity(username="restore", hostname="dr")


def test_validate_destination_identity_with_username_and_hostname_passes() -> None:
    validate_destination_identity(username="u", hostname="h", source_name=None)


def test_validate_destination_identity_with_source_name_passes() -> None:
    validate_destination_identity(username=None, hostname=None, source_name="webapp")


def test_validate_destination_identity_with_username_only_raises_missing_hostname() -> None:
    with pytest.raises(IdentityConfigurationError, match="missing 'hostname'"):
        validate_destination_identity(username="u", hostname=None, source_name=None)


def test_validate_destination_identity_without_identity_raises_with_help_text() -> None:
    with pytest.raises(IdentityConfigurationError) as error:
        validate_destination_identity(username=None, hostname="", source_name=None)

    assert "missing identity configuration" in str(error.value)
    assert "sourceIdentity" in str(error.value)
