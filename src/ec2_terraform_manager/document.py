"""Assembly and splicing of the main.tf configuration document"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Sequence

from jinja2 import Environment, StrictUndefined

from ec2_terraform_manager import hcl
from ec2_terraform_manager.errors import DocumentInvariantError
from ec2_terraform_manager.scanner import (
    find_instance_map,
    iter_entries,
    locate_balanced_region,
    record_predicate,
)

_JINJA = Environment(undefined=StrictUndefined, keep_trailing_newline=True, autoescape=False)

PREAMBLE_TEMPLATE = """\
# Terraform configuration for EC2 instances
terraform {
  required_providers {
    aws = {
      source  = "hashicorp/aws"
      version = {{ provider_version | hcl_string }}
    }
  }
}

provider "aws" {
  region = {{ region | hcl_string }}
}

# Define the instances we want to manage
locals {
  instances = {
"""

MAP_CLOSE = """\
  }
}
"""

RESOURCE_TEMPLATE = """
# Create all instances using for_each
resource "aws_instance" "managed_instances" {
  for_each = local.instances

  ami                    = each.value.ami
  instance_type          = each.value.instance_type
  subnet_id              = each.value.subnet_id
  vpc_security_group_ids = each.value.security_group_ids
  iam_instance_profile   = each.value.iam_instance_profile
  key_name               = each.value.key_name
  private_ip             = each.value.private_ip
  monitoring             = each.value.monitoring

  # Root block device configuration
  root_block_device {
    volume_size = each.value.root_volume_size
    volume_type = each.value.root_volume_type
    encrypted   = each.value.root_volume_encrypted
    tags = merge(
      lookup(each.value, "root_volume_tags", {}),
      {
        Name = "${each.value.tags.Name}-root"
      }
    )
  }

  # Dynamic EBS volumes
  dynamic "ebs_block_device" {
    for_each = lookup(each.value, "ebs_volumes", [])
    content {
      device_name           = ebs_block_device.value.device_name
      volume_size           = ebs_block_device.value.volume_size
      volume_type           = ebs_block_device.value.volume_type
      encrypted             = ebs_block_device.value.encrypted
      delete_on_termination = ebs_block_device.value.delete_on_termination
      tags = {
        Name = "${each.value.tags.Name}-${ebs_block_device.value.name}"
      }
    }
  }

  # User data script (if specified)
  user_data = each.value.user_data_path != null ? file(each.value.user_data_path) : null

  metadata_options {
    http_endpoint               = each.value.http_endpoint
    http_tokens                 = each.value.http_tokens
    http_put_response_hop_limit = each.value.http_hop_limit
    instance_metadata_tags      = each.value.metadata_tags
  }

  disable_api_termination = each.value.termination_protection
  disable_api_stop        = each.value.stop_protection

  tags = each.value.tags

  lifecycle {
    prevent_destroy = {{ prevent_destroy | lower }}
    ignore_changes = [
      ami,
      user_data,
    ]
  }
}

# Outputs
output "managed_instances" {
  description = "Details of all managed instances"
  value = {
    for name, instance in aws_instance.managed_instances : name => {
      id         = instance.id
      private_ip = instance.private_ip
      public_ip  = instance.public_ip
      state      = instance.instance_state
    }
  }
}

output "instance_summary" {
  description = "Summary table of managed instances"
  value = {
    for name, config in local.instances : name => {
      instance_type = config.instance_type
      subnet_id     = config.subnet_id
      name_tag      = config.tags.Name
    }
  }
}
"""

_JINJA.filters["hcl_string"] = hcl.format_string


@dataclass
class SpliceResult:
    """Record blocks left after cutting a target out of the instance map."""

    remaining: list[str] = field(default_factory=list)
    removed: str | None = None

    @property
    def found(self) -> bool:
        return self.removed is not None


def _strip_blank_edges(block: str) -> str:
    lines = block.split("\n")
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines)


def render_document(
    existing_blocks: Sequence[str],
    new_block: str | None = None,
    *,
    region: str,
    provider_version: str = "~> 5.0",
    prevent_destroy: bool = True,
) -> str:
    """Render the full document around the given record blocks.

    Existing blocks are emitted verbatim and in order, *new_block* last.
    The output depends on the inputs only.
    """
    blocks = list(existing_blocks)
    if new_block is not None:
        blocks.append(new_block)
    preamble = _JINJA.from_string(PREAMBLE_TEMPLATE).render(region=region, provider_version=provider_version)
    resource = _JINJA.from_string(RESOURCE_TEMPLATE).render(prevent_destroy=prevent_destroy)
    body = "".join(block + "\n" for block in blocks)
    return preamble + body + MAP_CLOSE + resource


def splice(text: str, target_key: str | None = None) -> SpliceResult:
    """Split the instance map of *text* into kept blocks and the cut target.

    Every block not keyed exactly *target_key* is kept verbatim. All blocks
    keyed *target_key* are cut and returned joined as ``removed``. A document
    without an instance map yields an empty result.
    """
    region = find_instance_map(text)
    if region is None:
        return SpliceResult()
    result = SpliceResult()
    removed: list[str] = []
    for entry in iter_entries(text, region):
        block = _strip_blank_edges(entry.text(text))
        if target_key is not None and entry.key == target_key:
            removed.append(block)
        else:
            result.remaining.append(block)
    if removed:
        result.removed = "\n".join(removed)
    return result


def list_record_keys(text: str) -> list[str]:
    region = find_instance_map(text)
    if region is None:
        return []
    return [entry.key for entry in iter_entries(text, region)]


def contains_record(text: str, key: str) -> bool:
    return key in list_record_keys(text)


def extract_record(text: str, key: str) -> str | None:
    return splice(text, key).removed


def verify_document(text: str, expected_keys: Sequence[str]) -> None:
    """Check that a rendered document holds exactly *expected_keys*, each balanced."""
    region = find_instance_map(text)
    if region is None:
        raise DocumentInvariantError("Rendered document has no balanced instance map")
    entries = list(iter_entries(text, region))
    keys = [entry.key for entry in entries]
    duplicates = sorted(key for key, count in Counter(keys).items() if count > 1)
    if duplicates:
        raise DocumentInvariantError(f"Rendered document repeats instance keys: {', '.join(duplicates)}")
    if keys != list(expected_keys):
        raise DocumentInvariantError(
            f"Rendered document holds {keys}, expected {list(expected_keys)}"
        )
    lines = text.split("\n")
    for entry in entries:
        block = locate_balanced_region(lines, record_predicate(entry.key), start=entry.key_line)
        if block is None or block.start != entry.key_line or block.end > region.end:
            raise DocumentInvariantError(f"Record '{entry.key}' is not a balanced block")
