"""Terraform manager for the EC2 configuration directory"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

from ec2_terraform_manager.console import print_debug
from ec2_terraform_manager.errors import TerraformError

NO_STATE_MESSAGE = "No state file was found"


class TerraformManager:
    """Manage Terraform operations"""

    def __init__(self, work_dir: os.PathLike | str, binary: str = "terraform") -> None:
        self.work_dir: Path = Path(os.path.normpath(work_dir))
        self.binary: str = binary

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        cmd: list[str] = [self.binary, *args]
        print_debug(f"Running: {' '.join(cmd)} (in {self.work_dir})")
        try:
            result: subprocess.CompletedProcess[str] = subprocess.run(
                cmd, cwd=self.work_dir, capture_output=True, text=True
            )
        except FileNotFoundError as e:
            raise TerraformError(cmd, 127, f"{self.binary} executable not found") from e

        if check and result.returncode != 0:
            raise TerraformError(cmd, result.returncode, result.stderr)

        return result

    def init(self, upgrade: bool = False) -> str:
        """Initialize Terraform"""
        args = ["init", "-input=false", "-no-color"]
        if upgrade:
            args.append("-upgrade")
        return self._run(*args).stdout

    def validate(self) -> str:
        """Run terraform validate"""
        return self._run("validate", "-no-color").stdout

    def plan(self) -> str:
        """Run terraform plan"""
        return self._run("plan", "-input=false", "-no-color").stdout

    def apply(self, auto_approve: bool = False) -> str:
        """Run terraform apply"""
        args = ["apply", "-input=false", "-no-color"]
        if auto_approve:
            args.append("-auto-approve")
        return self._run(*args).stdout

    def state_list(self) -> list[str]:
        """Addresses tracked in state; empty when there is no state yet

        Any other failure (locked or unreadable state) raises TerraformError.
        """
        result = self._run("state", "list", check=False)
        if result.returncode != 0:
            if NO_STATE_MESSAGE not in result.stderr:
                raise TerraformError([self.binary, "state", "list"], result.returncode, result.stderr)
            print_debug(f"terraform state list: {result.stderr.strip()}")
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def has_tracked_resource(self, address: str) -> bool:
        return address in self.state_list()

    def state_show(self, address: str) -> str:
        return self._run("state", "show", "-no-color", address).stdout

    def state_rm(self, address: str) -> str:
        """Forget *address* without destroying the real resource"""
        return self._run("state", "rm", address).stdout

    def import_resource(self, address: str, resource_id: str) -> str:
        """Run terraform import"""
        return self._run("import", "-input=false", "-no-color", address, resource_id).stdout

