"""Entry point for running ec2_terraform_manager as a module"""

from ec2_terraform_manager.cli import main

if __name__ == "__main__":
    main()
