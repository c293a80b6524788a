"""Tests for the instance record model."""
from __future__ import annotations

import random
import re

import pytest

from conftest import NAME_ALPHABET, make_record, random_name
from ec2_terraform_manager.errors import RecordValidationError
from ec2_terraform_manager.models import (
    ExtraVolume,
    MetadataPolicy,
    NetworkConfig,
    derive_resource_key,
    resource_address,
    validate_record,
)


@pytest.mark.parametrize(
    ("name", "key"),
    [
        ("web server", "web_server"),
        ("  prod-db  ", "prod_db"),
        ("api.v2--east", "api_v2_east"),
        ("already_ok_1", "already_ok_1"),
        ("名前 server", "_server"),
    ],
)
def test_derive_resource_key(name: str, key: str) -> None:
    assert derive_resource_key(name) == key


def test_derive_resource_key_is_idempotent() -> None:
    key = derive_resource_key("my  web//server")
    assert derive_resource_key(key) == key


def _expected_key(name: str) -> str:
    chars = [ch if ch.isascii() and (ch.isalnum() or ch == "_") else "_" for ch in name.strip()]
    return re.sub("_+", "_", "".join(chars))


def test_derive_resource_key_random_names() -> None:
    """Keys only hold [A-Za-z0-9_], never repeat "_" and are stable under re-derivation."""
    rng = random.Random(20240611)
    for _ in range(2000):
        name = random_name(rng)
        key = derive_resource_key(name)
        assert re.fullmatch(r"[A-Za-z0-9_]+", key), name
        assert "__" not in key
        assert key == _expected_key(name)
        assert derive_resource_key(key) == key
        assert derive_resource_key(f"  {name}\t") == key


def test_names_differing_only_in_separators_collide() -> None:
    rng = random.Random(7)
    unsafe = [ch for ch in NAME_ALPHABET if not (ch.isascii() and (ch.isalnum() or ch == "_")) and not ch.isspace()]
    for _ in range(500):
        name = random_name(rng).strip()
        variant = "".join(
            rng.choice(unsafe) if not (ch.isascii() and (ch.isalnum() or ch == "_")) else ch for ch in name
        )
        assert derive_resource_key(variant) == derive_resource_key(name), (name, variant)


def test_resource_address() -> None:
    assert resource_address("web_server") == 'aws_instance.managed_instances["web_server"]'
    assert make_record("web server").address == resource_address("web_server")


def test_all_tags_puts_default_tags_first() -> None:
    record = make_record("web", tags={"Team": "ops", "Name": "ignored"}, environment="prod")
    assert list(record.all_tags().items()) == [
        ("Name", "web"),
        ("Terraform", "true"),
        ("Environment", "prod"),
        ("Team", "ops"),
    ]


def test_validate_record_accepts_minimal_record() -> None:
    validate_record(make_record())


def test_validate_record_collects_every_problem() -> None:
    record = make_record(
        "  ",
        image="",
        network=NetworkConfig(subnet_id="subnet-1", vpc_id="vpc-1", security_group_ids=["web-sg"]),
        extra_volumes=[ExtraVolume("/dev/sdf"), ExtraVolume("/dev/sdf", size_gib=0)],
        metadata_policy=MetadataPolicy(hop_limit=0),
        tags={"Environment": "prod"},
    )
    with pytest.raises(RecordValidationError) as excinfo:
        validate_record(record)
    problems = "\n".join(excinfo.value.problems)
    assert "instance name is empty" in problems
    assert "image is empty" in problems
    assert "invalid security group id 'web-sg'" in problems
    assert "used twice" in problems
    assert "size must be positive" in problems
    assert "hop limit" in problems
    assert "'Environment' is set automatically" in problems


def test_validate_record_rejects_name_without_usable_characters() -> None:
    with pytest.raises(RecordValidationError):
        validate_record(make_record("---"))
