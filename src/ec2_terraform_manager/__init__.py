"""Manage EC2 instances through a single Terraform main.tf"""

__version__ = "1.0.0"
