"""Tests for the terraform CLI wrapper."""
from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from ec2_terraform_manager.errors import TerraformError
from ec2_terraform_manager.terraform_manager import TerraformManager

RUN = "ec2_terraform_manager.terraform_manager.subprocess.run"


def _done(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def test_commands_run_in_work_dir(tmp_path: Path) -> None:
    manager = TerraformManager(tmp_path, binary="tofu")
    with patch(RUN, return_value=_done(stdout="Success!")) as run:
        assert manager.validate() == "Success!"
    args, kwargs = run.call_args
    assert args[0] == ["tofu", "validate", "-no-color"]
    assert kwargs["cwd"] == tmp_path
    assert kwargs["capture_output"] is True


def test_import_resource_arguments(tmp_path: Path) -> None:
    manager = TerraformManager(tmp_path)
    address = 'aws_instance.managed_instances["web"]'
    with patch(RUN, return_value=_done()) as run:
        manager.import_resource(address, "i-123")
    assert run.call_args.args[0] == ["terraform", "import", "-input=false", "-no-color", address, "i-123"]


def test_apply_auto_approve_flag(tmp_path: Path) -> None:
    manager = TerraformManager(tmp_path)
    with patch(RUN, return_value=_done()) as run:
        manager.apply(auto_approve=True)
        manager.apply()
    first, second = (call.args[0] for call in run.call_args_list)
    assert "-auto-approve" in first
    assert "-auto-approve" not in second


def test_failure_raises_terraform_error(tmp_path: Path) -> None:
    manager = TerraformManager(tmp_path)
    with patch(RUN, return_value=_done(returncode=1, stderr="Error: Unsupported argument")):
        with pytest.raises(TerraformError, match="Terraform validate failed: Error: Unsupported argument") as excinfo:
            manager.validate()
    assert excinfo.value.returncode == 1
    assert excinfo.value.command[:2] == ["terraform", "validate"]


def test_missing_binary_raises_terraform_error(tmp_path: Path) -> None:
    manager = TerraformManager(tmp_path)
    with patch(RUN, side_effect=FileNotFoundError("terraform")):
        with pytest.raises(TerraformError, match="not found"):
            manager.plan()


def test_state_list_without_state_is_empty(tmp_path: Path) -> None:
    manager = TerraformManager(tmp_path)
    with patch(RUN, return_value=_done(returncode=1, stderr="No state file was found!")):
        assert manager.state_list() == []


def test_has_tracked_resource(tmp_path: Path) -> None:
    manager = TerraformManager(tmp_path)
    listing = 'aws_instance.managed_instances["a"]\naws_instance.managed_instances["b"]\n'
    with patch(RUN, return_value=_done(stdout=listing)):
        assert manager.has_tracked_resource('aws_instance.managed_instances["b"]')
        assert not manager.has_tracked_resource('aws_instance.managed_instances["c"]')


def test_state_list_failure_raises(tmp_path: Path) -> None:
    """A locked or unreadable state is an error, not an empty listing."""
    manager = TerraformManager(tmp_path)
    with patch(RUN, return_value=_done(returncode=1, stderr="Error acquiring the state lock")):
        with pytest.raises(TerraformError, match="state lock"):
            manager.has_tracked_resource('aws_instance.managed_instances["a"]')
