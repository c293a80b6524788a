from setuptools import setup, find_packages

setup(
    name="ec2-terraform-manager",
    version="1.0.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "boto3>=1.28.0",
        "botocore>=1.31.0",
        "click>=8.0.0",
        "rich>=13.0.0",
        "pyyaml>=5.4",
        "jinja2>=3.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ec2-terraform-manager=ec2_terraform_manager.cli:main",
        ],
    },
    python_requires=">=3.9",
)
