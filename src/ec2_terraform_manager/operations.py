"""Create, import, remove and inspect managed EC2 instances"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

from ec2_terraform_manager.aws_client import AWSInventoryClient
from ec2_terraform_manager.console import (
    CONSOLE,
    print_error,
    print_header,
    print_status,
    print_success,
    print_warning,
)
from ec2_terraform_manager.document import (
    extract_record,
    list_record_keys,
    render_document,
    splice,
    verify_document,
)
from ec2_terraform_manager.errors import (
    DuplicateRecordError,
    ManagerError,
    PostWriteValidationError,
    RecordNotFoundError,
    RecordParseError,
    TerraformError,
    UsageError,
)
from ec2_terraform_manager.models import (
    RESOURCE_TYPE,
    InstanceRecord,
    derive_resource_key,
    resource_address,
    validate_record,
)
from ec2_terraform_manager.prompts import InstancePrompter
from ec2_terraform_manager.records import parse_record, record_from_snapshot, render_record
from ec2_terraform_manager.repository import ConfigRepository
from ec2_terraform_manager.scanner import require_instance_map
from ec2_terraform_manager.settings import Settings
from ec2_terraform_manager.terraform_manager import TerraformManager


class InstanceManager:
    """Runs each inventory operation against the shared main.tf"""

    def __init__(
        self,
        settings: Settings,
        repository: ConfigRepository,
        terraform: TerraformManager,
        provider: AWSInventoryClient,
        prompter: InstancePrompter,
    ) -> None:
        self.settings: Settings = settings
        self.repository: ConfigRepository = repository
        self.terraform: TerraformManager = terraform
        self.provider: AWSInventoryClient = provider
        self.prompter: InstancePrompter = prompter

        # Step results, rendered by the CLI
        self.results: dict[str, Any] = {}
        self.cancelled: bool = False

    def _step(self, name: str, success: bool, details: str) -> None:
        self.results[name] = {"success": success, "details": details}

    def _reset(self) -> None:
        self.results = {}
        self.cancelled = False

    def _cancel(self, message: str = "Cancelled.") -> dict[str, Any]:
        print_status(message)
        self.cancelled = True
        return self.results

    def _existing_name(self, text: str, key: str) -> str | None:
        block = extract_record(text, key)
        if block is None:
            return None
        try:
            return parse_record(block)[1].name
        except RecordParseError:
            return None

    def _accept_unreadable(self, text: str, assume_yes: bool = False) -> bool:
        """Ask before regenerating a document that has no instance map

        A map that is present but broken raises UnbalancedDocumentError instead.
        """
        if not text.strip() or require_instance_map(text) is not None:
            return True
        print_warning(
            f"{self.repository.path} has no instance map; writing will replace its content "
            "(a backup is taken first)"
        )
        return assume_yes or self.prompter.confirm("Continue anyway?", default=False)

    def _write_document(self, blocks: Sequence[str], new_block: str | None, expected_keys: Sequence[str]) -> None:
        text = render_document(
            blocks,
            new_block,
            region=self.settings.region,
            provider_version=self.settings.provider_version,
            prevent_destroy=self.settings.prevent_destroy,
        )
        verify_document(text, expected_keys)
        self.repository.write(text)

    def _backup(self) -> Path | None:
        backup = self.repository.backup()
        if backup is not None:
            print_success(f"Backed up existing {self.repository.path.name} to {backup.name}")
            self._step("backup", True, str(backup))
        return backup

    def _ensure_initialized(self) -> None:
        if not (self.terraform.work_dir / ".terraform").is_dir():
            print_status("Initializing Terraform...")
            self.terraform.init()

    def _show_keys(self, keys: Sequence[str], empty: str = "None found") -> None:
        if not keys:
            CONSOLE.print(f"  {empty}")
        for key in keys:
            CONSOLE.print(f"  • {key}")

    def create(self) -> dict[str, Any]:
        """Interactively build a new record and add it to the document"""
        self._reset()
        print_header("EC2 INSTANCE CREATOR")

        text = self.repository.read()
        require_instance_map(text)
        if self.repository.exists():
            print_status(f"{self.repository.path.name} exists - will add to existing instances")
            CONSOLE.print("Current instances:")
            self._show_keys(list_record_keys(text))
        else:
            print_status(f"No existing {self.repository.path.name} found - will create new one")

        name = self.prompter.ask_name()
        key = derive_resource_key(name)
        print_status(f"Resource name will be: {key}")
        if key in list_record_keys(text):
            raise DuplicateRecordError(key, self._existing_name(text, key))

        record = self.prompter.collect_record(name, self.provider)
        validate_record(record)
        self.prompter.show_summary(record)
        if not self.prompter.confirm(f"Add this instance to {self.repository.path.name}?", default=False):
            return self._cancel()

        with self.repository.lock():
            text = self.repository.read()
            keys = list_record_keys(text)
            if key in keys:
                raise DuplicateRecordError(key, self._existing_name(text, key))
            if not self._accept_unreadable(text):
                return self._cancel()
            self._backup()
            self._write_document(splice(text).remaining, render_record(record), [*keys, key])

        print_success(f"Added instance '{key}' to {self.repository.path.name}")
        self._step("configuration", True, f"{record.name} ({record.instance_class}, {record.image})")
        if keys:
            print_success("Existing instances preserved in configuration")
        CONSOLE.print("\n[bold cyan]Next steps:[/bold cyan]")
        CONSOLE.print(f"1. Review {self.repository.path.name}")
        CONSOLE.print("2. Run: terraform validate")
        CONSOLE.print("3. Run: terraform plan")
        CONSOLE.print("4. Run: terraform apply")
        return self.results

    def import_instance(self, instance_id: str, assume_yes: bool = False) -> dict[str, Any]:
        """Bring an existing instance under management"""
        self._reset()
        if not instance_id:
            raise UsageError("An instance id is required (e.g. i-0b7fc7c40f824a8b9)")
        print_header("EC2 INSTANCE IMPORTER")
        print_status(f"Importing instance: {instance_id}")

        print_status("Step 1: Fetching instance details...")
        instance = self.provider.describe_instance(instance_id)
        volumes = self.provider.collect_volumes(instance)
        protection = self.provider.get_instance_protection(instance_id)
        record = record_from_snapshot(instance, volumes, protection, self.settings.environment)
        validate_record(record)
        key = record.resource_key
        self._step("instance_details", True, f"{record.name} ({record.instance_class})")
        self.prompter.show_summary(record, title="Instance Details")

        with self.repository.lock():
            text = self.repository.read()
            keys = list_record_keys(text)
            if key in keys:
                self._show_replaced(text, key)
                if not (assume_yes or self.prompter.confirm(f"Instance '{key}' already exists. Overwrite?")):
                    return self._cancel("Import cancelled.")
            if not self._accept_unreadable(text, assume_yes):
                return self._cancel("Import cancelled.")

            print_status("Step 2: Adding instance to configuration...")
            backup = self._backup()
            self._write_document(
                splice(text, key).remaining,
                render_record(record),
                [k for k in keys if k != key] + [key],
            )
            print_success(f"Added instance '{key}' to {self.repository.path.name}")
            self._step("configuration", True, key)

            print_status("Step 3: Validating configuration...")
            try:
                self._ensure_initialized()
                self.terraform.validate()
            except TerraformError as e:
                self._step("validation", False, e.stderr.strip())
                message = f"Validation failed: {e.stderr.strip() or e}"
                if backup is not None:
                    message += f" (previous configuration kept in {backup})"
                raise PostWriteValidationError(message, backup=backup) from e
            self._step("validation", True, "terraform validate passed")

            address = resource_address(key)
            print_status("Step 4: Checking whether the instance is already tracked...")
            if self.terraform.has_tracked_resource(address):
                print_warning("Instance already managed by Terraform. Removing from state for re-import...")
                self.terraform.state_rm(address)
                self._step("state_cleanup", True, f"Removed {address} from state")

            print_status("Step 5: Importing instance...")
            self.terraform.import_resource(address, instance_id)
            self._step("import", True, f"{address} <- {instance_id}")
            print_success("Import successful")

            print_status("Step 6: Final verification...")
            CONSOLE.print(self.terraform.plan(), markup=False, highlight=False)
            self._step("plan", True, "terraform plan completed")

        print_success(f"Instance {record.name} ({instance_id}) is now managed by Terraform as '{key}'")
        return self.results

    def _show_replaced(self, text: str, key: str) -> None:
        block = extract_record(text, key)
        if block is None:
            return
        try:
            _, existing = parse_record(block)
        except RecordParseError:
            print_warning(f"Existing record '{key}' could not be read back; it will be replaced")
            CONSOLE.print(block, markup=False, highlight=False)
            return
        self.prompter.show_summary(existing, title=f"Existing record '{key}'")

    def remove(self, key: str, forget: bool = False) -> dict[str, Any]:
        """Drop a record from the document; with *forget*, release it from state too"""
        self._reset()
        if not key:
            raise UsageError("A resource name is required")
        print_header("REMOVE INSTANCE FROM CONFIGURATION")
        print_status(f"Target: {key}")

        with self.repository.lock():
            if not self.repository.exists():
                print_error(f"No {self.repository.path.name} found")
                raise RecordNotFoundError(key)
            text = self.repository.read()
            require_instance_map(text)
            keys = list_record_keys(text)
            if key not in keys:
                raise RecordNotFoundError(key, keys)

            backup = self._backup()
            print_status(f"Removing '{key}' from {self.repository.path.name}...")
            self._write_document(splice(text, key).remaining, None, [k for k in keys if k != key])
            print_success(f"Removed '{key}' from {self.repository.path.name}")
            self._step("configuration", True, f"Removed {key}")

            print_status("Validating updated configuration...")
            try:
                self._ensure_initialized()
                self.terraform.validate()
            except TerraformError as e:
                print_error("Configuration validation failed, restoring backup...")
                restored = False
                if backup is not None:
                    self.repository.restore(backup)
                    restored = True
                self._step("validation", False, e.stderr.strip())
                raise PostWriteValidationError(
                    f"Validation failed after removing '{key}': {e.stderr.strip() or e}",
                    backup=backup,
                    restored=restored,
                ) from e
            self._step("validation", True, "terraform validate passed")

            if forget:
                address = resource_address(key)
                if self.terraform.has_tracked_resource(address):
                    self.terraform.state_rm(address)
                    print_success(f"Removed {address} from Terraform state; the instance keeps running")
                    self._step("state", True, f"Forgot {address}")
                else:
                    print_status(f"{address} is not tracked in Terraform state")
                    self._step("state", True, f"{address} was not tracked")

        CONSOLE.print("\nRemaining instances in configuration:")
        self._show_keys([k for k in keys if k != key], empty="None")
        if not forget:
            CONSOLE.print("\n[bold cyan]Next steps:[/bold cyan]")
            CONSOLE.print(f"1. Review the updated {self.repository.path.name}")
            CONSOLE.print("2. Run: terraform plan (should show 1 to destroy)")
            CONSOLE.print("3. Run: terraform apply (will destroy the instance)")
            print_warning("The AWS instance keeps running until the changes are applied")
        return self.results

    def list_instances(self) -> dict[str, Any]:
        """Collect tracked, configured and live instances; changes nothing"""
        self._reset()
        inventory: dict[str, Any] = {"tracked": [], "configured": [], "live": []}

        try:
            inventory["tracked"] = [
                address for address in self.terraform.state_list() if address.startswith(f"{RESOURCE_TYPE}.")
            ]
            self._step("state", True, f"{len(inventory['tracked'])} tracked")
        except TerraformError as e:
            print_warning(f"Could not read Terraform state: {e}")
            self._step("state", False, str(e))

        text = self.repository.read()
        for key in list_record_keys(text):
            record: InstanceRecord | None = None
            block = extract_record(text, key)
            try:
                record = parse_record(block)[1] if block is not None else None
            except RecordParseError as e:
                print_warning(str(e))
            inventory["configured"].append((key, record))
        self._step("configuration", True, f"{len(inventory['configured'])} configured")

        try:
            inventory["live"] = self.provider.list_instances()
            self._step("aws", True, f"{len(inventory['live'])} instances in {self.settings.region}")
        except ManagerError as e:
            print_warning(f"Could not list AWS instances: {e}")
            self._step("aws", False, str(e))

        return inventory

    def validate_setup(self) -> dict[str, Any]:
        """Check the document, terraform validate and AWS credentials"""
        self._reset()
        errors: list[ManagerError] = []

        if self.repository.exists():
            keys = list_record_keys(self.repository.read())
            self._step("configuration", True, f"{len(keys)} instance(s) in {self.repository.path.name}")
            try:
                self._ensure_initialized()
                self.terraform.validate()
                self._step("terraform", True, "terraform validate passed")
            except TerraformError as e:
                self._step("terraform", False, e.stderr.strip() or str(e))
                errors.append(e)
        else:
            message = f"No {self.repository.path.name} found in {self.repository.path.parent}"
            self._step("configuration", False, message)
            errors.append(ManagerError(message))

        try:
            identity = self.provider.caller_identity()
            self._step("aws_credentials", True, f"Account {identity['account']} ({identity['arn']})")
        except ManagerError as e:
            self._step("aws_credentials", False, str(e))
            errors.append(e)

        if errors:
            raise errors[0]
        return self.results

    def plan(self) -> dict[str, Any]:
        self._reset()
        self._ensure_initialized()
        CONSOLE.print(self.terraform.plan(), markup=False, highlight=False)
        self._step("plan", True, "terraform plan completed")
        return self.results

    def apply(self, assume_yes: bool = False) -> dict[str, Any]:
        self._reset()
        if not (assume_yes or self.prompter.confirm("Apply the changes to AWS?", default=False)):
            return self._cancel()
        self._ensure_initialized()
        CONSOLE.print(self.terraform.apply(auto_approve=True), markup=False, highlight=False)
        self._step("apply", True, "terraform apply completed")
        return self.results

    def backup_state(self) -> dict[str, Any]:
        """Copy main.tf and the state files into a timestamped directory"""
        self._reset()
        target, copied = self.repository.snapshot_state(self.settings.backup_path)
        if not copied:
            print_warning("Nothing to back up")
        for path in copied:
            print_success(f"Backed up {path.name}")
        self._step("backup", True, f"{len(copied)} file(s) in {target}")
        return self.results
