from __future__ import annotations

import re

import pytest

from tenantdb.core.errors import IdentifierError
from tenantdb.services.provisioning import identifiers


def test_acme_billing_identifiers_with_default_username_limit() -> None:
    result = identifiers.generate_identifiers(environment="prod", client_slug="acme", service_slug="billing")
    assert result.database_name == "client_acme_billing_db"
    assert result.instance_identifier == "prod-acme-billing"
    # acme_billing_user is 17 characters; the default limit is 16.
    assert result.username == "acme_billing_use"


def test_acme_billing_username_fits_postgres_limit() -> None:
    result = identifiers.generate_identifiers(
        environment="prod", client_slug="acme", service_slug="billing", username_max_length=63
    )
    assert result.username == "acme_billing_user"


def test_service_less_identifiers() -> None:
    result = identifiers.generate_identifiers(environment="staging", client_slug="Acme Corp")
    assert result.database_name == "client_acme_corp_db"
    assert result.instance_identifier == "staging-acme-corp"
    assert result.username == "acme_corp_user"


def test_identifiers_are_deterministic() -> None:
    first = identifiers.generate_identifiers(environment="prod", client_slug="acme", service_slug="crm")
    second = identifiers.generate_identifiers(environment="prod", client_slug="acme", service_slug="crm")
    assert first == second


def test_slugify_collapses_separators() -> None:
    assert identifiers.slugify("  Big--Data & Co. ", "-") == "big-data-co"
    assert identifiers.slugify("Big--Data & Co.", "_") == "big_data_co"


def test_long_instance_identifier_is_truncated_with_digest() -> None:
    long_client = "a" * 40
    first = identifiers.instance_identifier("prod", long_client, "reporting-warehouse-service")
    second = identifiers.instance_identifier("prod", long_client, "reporting-warehouse-other")
    assert len(first) <= 63
    assert len(second) <= 63
    assert first != second
    assert re.fullmatch(r"[a-z][a-z0-9-]*-[0-9a-f]{6}", first)
    assert "--" not in first


@pytest.mark.parametrize(
    "client_slug,service_slug",
    [
        ("acme", "billing"),
        ("Mega Corp International Holdings", "Customer Relationship Management"),
        ("x", None),
        ("42-widgets", "ops"),
    ],
)
def test_generated_identifiers_respect_provider_rules(client_slug: str, service_slug: str | None) -> None:
    result = identifiers.generate_identifiers(
        environment="prod", client_slug=client_slug, service_slug=service_slug
    )
    assert len(result.instance_identifier) <= 63
    assert re.fullmatch(r"[a-z0-9-]+", result.instance_identifier)
    assert len(result.username) <= 16
    assert re.fullmatch(r"[a-z][a-z0-9_]*", result.username)
    assert result.username not in identifiers.RESERVED_USERNAMES


def test_username_starting_with_digit_gets_letter_prefix() -> None:
    assert identifiers.username("42widgets") == "u42widgets_user"


@pytest.mark.parametrize("value", ["postgres", "admin", "rdsadmin", "root", "rds_superuser"])
def test_reserved_usernames_are_rejected(value: str) -> None:
    with pytest.raises(IdentifierError):
        identifiers.validate_username(value)


@pytest.mark.parametrize("value", ["", "1user", "has-dash", "UpperCase", "a" * 17])
def test_invalid_usernames_are_rejected(value: str) -> None:
    with pytest.raises(IdentifierError):
        identifiers.validate_username(value)


@pytest.mark.parametrize("value", ["1prod", "prod-", "prod--acme", "Prod-acme", "a" * 64])
def test_invalid_instance_identifiers_are_rejected(value: str) -> None:
    with pytest.raises(IdentifierError):
        identifiers.validate_instance_identifier(value)


def test_generate_password_uses_letters_and_digits() -> None:
    password = identifiers.generate_password()
    assert len(password) == 32
    assert re.fullmatch(r"[A-Za-z0-9]{32}", password)
    assert identifiers.generate_password() != password


def test_random_instance_identifier_shape() -> None:
    value = identifiers.random_instance_identifier()
    assert re.fullmatch(r"rds-[a-z0-9]{8}", value)
    identifiers.validate_instance_identifier(value)
