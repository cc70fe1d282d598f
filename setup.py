"""Setup configuration for vps-backup."""

import os
import sys

from setuptools import find_packages, setup

# Get version from package
here = os.path.abspath(os.path.dirname(__file__))
sys.path.insert(0, here)
from vpsbackup import __author__, __version__  # noqa: E402

# Get the long description from the README file
with open(os.path.join(here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="vps-backup",
    version=__version__,
    description="Database, file and configuration backups for a single VPS",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author=__author__,
    keywords="backup restore postgresql mysql redis cron cli",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"vpsbackup": ["templates/*.j2"]},
    python_requires=">=3.8",
    install_requires=[
        "click>=8.0.0",
        "pyyaml>=6.0",
        "jinja2>=3.0.0",
        "jsonschema>=4.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.12.0",
            "mypy>=0.991",
        ],
    },
    entry_points={
        "console_scripts": [
            "vps-backup=vpsbackup.cli:cli",
            "vps-backup-run=vpsbackup.cli:backup_main",
            "verify-backups=vpsbackup.cli:verify_main",
            "restore-backup=vpsbackup.cli:restore_main",
            "backup-status=vpsbackup.cli:status_main",
        ],
    },
)
