"""Tests for document assembly and record splicing."""
from __future__ import annotations

import random

import pytest

from conftest import REGION, make_document, make_record, random_name
from ec2_terraform_manager.document import (
    contains_record,
    extract_record,
    list_record_keys,
    render_document,
    splice,
    verify_document,
)
from ec2_terraform_manager.errors import DocumentInvariantError
from ec2_terraform_manager.records import parse_record, render_record
from ec2_terraform_manager.scanner import find_instance_map


def test_empty_document_is_balanced() -> None:
    text = render_document([], region=REGION)
    assert find_instance_map(text) is not None
    assert list_record_keys(text) == []
    assert f'region = "{REGION}"' in text
    verify_document(text, [])


def test_render_document_settings() -> None:
    text = render_document([], region="us-west-2", provider_version="~> 6.0", prevent_destroy=False)
    assert 'version = "~> 6.0"' in text
    assert 'region = "us-west-2"' in text
    assert "prevent_destroy = false" in text
    assert 'resource "aws_instance" "managed_instances"' in text
    assert 'output "instance_summary"' in text


def test_render_document_appends_new_block_last() -> None:
    first, second = render_record(make_record("a")), render_record(make_record("b"))
    text = render_document([first], second, region=REGION)
    assert list_record_keys(text) == ["a", "b"]


def test_splice_then_render_is_identity() -> None:
    """Splicing out nothing and rendering again reproduces the document."""
    text = make_document(make_record("a"), make_record("b"), make_record("c"))
    result = splice(text)
    assert not result.found
    assert render_document(result.remaining, region=REGION) == text


def test_splice_removes_only_the_target() -> None:
    a, b, c = (render_record(make_record(name)) for name in "abc")
    text = render_document([a, b, c], region=REGION)
    result = splice(text, "b")
    assert result.found
    assert result.removed == b
    assert result.remaining == [a, c]


def test_splice_missing_target() -> None:
    result = splice(make_document(make_record("a")), "z")
    assert not result.found
    assert len(result.remaining) == 1


def test_splice_removes_all_duplicates() -> None:
    a, b = render_record(make_record("a")), render_record(make_record("b"))
    text = render_document([a, b, a], region=REGION)
    result = splice(text, "a")
    assert result.remaining == [b]
    assert result.removed == f"{a}\n{a}"


def test_splice_without_instance_map() -> None:
    result = splice('provider "aws" {\n  region = "x"\n}\n', "a")
    assert result.remaining == []
    assert result.removed is None


def test_hand_edited_comments_survive_splice() -> None:
    text = make_document(make_record("a"), make_record("b"))
    text = text.replace("    b = {", "    # owned by the data team\n    b = {")
    text = text.replace('"ami-123"', '"ami-123" # pinned', 1)
    result = splice(text, "a")
    assert len(result.remaining) == 1
    assert result.remaining[0].startswith("    # owned by the data team\n    b = {")
    rendered = render_document(result.remaining, region=REGION)
    assert "# owned by the data team" in rendered
    assert list_record_keys(rendered) == ["b"]


def test_braces_in_values_do_not_confuse_splicing() -> None:
    odd = make_record("odd", tags={"Note": "} closing { opening", "Expr": "${var.x}"})
    text = make_document(make_record("a"), odd, make_record("c"))
    assert list_record_keys(text) == ["a", "odd", "c"]
    result = splice(text, "odd")
    assert parse_record(result.removed)[1] == odd
    verify_document(render_document(result.remaining, region=REGION), ["a", "c"])


def test_extract_and_contains_record() -> None:
    text = make_document(make_record("a"))
    assert contains_record(text, "a")
    assert not contains_record(text, "b")
    assert extract_record(text, "a") == render_record(make_record("a"))
    assert extract_record(text, "b") is None


def test_verify_document_detects_wrong_keys() -> None:
    text = make_document(make_record("a"))
    with pytest.raises(DocumentInvariantError):
        verify_document(text, ["a", "b"])


def test_verify_document_detects_duplicates() -> None:
    block = render_record(make_record("a"))
    with pytest.raises(DocumentInvariantError, match="repeats"):
        verify_document(render_document([block, block], region=REGION), ["a", "a"])


def test_verify_document_detects_missing_map() -> None:
    with pytest.raises(DocumentInvariantError):
        verify_document("locals {}\n", [])


def test_balance_holds_across_create_import_remove_sequence() -> None:
    """Every intermediate document keeps a balanced map with the expected keys."""
    text = render_document([], region=REGION)
    keys: list[str] = []
    steps = [("add", "a"), ("add", "b"), ("replace", "a"), ("remove", "b"), ("add", "c"), ("remove", "a")]
    for action, name in steps:
        result = splice(text, name if action != "add" else None)
        new_block = render_record(make_record(name, instance_class="t3.large")) if action != "remove" else None
        keys = [key for key in keys if key != name] + ([name] if new_block else [])
        text = render_document(result.remaining, new_block, region=REGION)
        verify_document(text, keys)
    assert list_record_keys(text) == ["c"]


def test_splice_round_trip_with_random_records() -> None:
    """Cutting the new record out of a rendered document gives back exactly what went in."""
    rng = random.Random(31337)
    for _ in range(300):
        records = {}
        for _ in range(rng.randint(0, 5)):
            record = make_record(random_name(rng), tags={"Owner": random_name(rng)})
            records.setdefault(record.resource_key, record)
        new = make_record(random_name(rng), tags={"Note": random_name(rng, 24)})
        records.pop(new.resource_key, None)
        existing = [render_record(record) for record in records.values()]
        new_block = render_record(new)

        text = render_document(existing, new_block, region=REGION)
        result = splice(text, new.resource_key)

        assert result.removed == new_block
        assert result.remaining == existing
        assert parse_record(result.removed)[1] == new
        verify_document(text, [*records, new.resource_key])
        assert render_document(result.remaining, result.removed, region=REGION) == text
