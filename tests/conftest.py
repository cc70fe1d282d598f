"""Pytest configuration and shared fixtures."""

import os
import subprocess
import tempfile

import pytest

from vpsbackup.config import DEFAULT_CONFIG, merge_config
from vpsbackup.utils.commands import CommandRunner


class FakeRunner(CommandRunner):
    """Command runner that records commands instead of executing them."""

    def __init__(self, active=None, outputs=None, crontab=None):
        super().__init__()
        self.active = active or {}
        self.outputs = outputs or {}
        self.crontab = crontab
        self.calls = []
        self.inputs = []
        self.crontab_writes = 0

    def run(self, command, check=True, input_text=None):
        self.calls.append(list(command))

        if command == ["crontab", "-l"]:
            if self.crontab is None:
                return subprocess.CompletedProcess(command, 1, stdout="", stderr="no crontab for root")
            return subprocess.CompletedProcess(command, 0, stdout=self.crontab, stderr="")

        if command == ["crontab", "-"]:
            self.crontab = input_text
            self.crontab_writes += 1
            return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

        return subprocess.CompletedProcess(command, 0, stdout=self.outputs.get(" ".join(command), ""), stderr="")

    def run_to_file(self, command, output_path):
        self.calls.append(list(command))
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(f"-- {' '.join(command)}\n")

    def run_with_input(self, command, stream):
        self.calls.append(list(command))
        self.inputs.append(stream.read())

    def is_service_active(self, unit):
        return self.active.get(unit, False)


@pytest.fixture
def temp_directory():
    """Create a temporary directory for testing."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    # Cleanup
    import shutil
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def fake_runner():
    """Factory for command runners that record instead of executing."""
    return FakeRunner


@pytest.fixture
def sample_sources(temp_directory):
    """Directories and files standing in for the VPS content to back up."""
    structure = {
        "projects": {
            "app": {
                "main.py": 'print("hello")\n',
                "settings.ini": "[app]\ndebug = false\n",
            },
        },
        "nginx": {
            "nginx.conf": "worker_processes auto;\n",
            "sites-enabled": {"default": "server { listen 80; }\n"},
        },
        "etc": {
            "hosts": "127.0.0.1 localhost\n",
            "hostname": "testhost\n",
        },
        "redis": {
            "dump.rdb": "REDIS0009 fake snapshot",
        },
    }

    def create_structure(base_path, spec):
        for name, content in spec.items():
            path = os.path.join(base_path, name)
            if isinstance(content, dict):
                os.makedirs(path, exist_ok=True)
                create_structure(path, content)
            else:
                with open(path, "w", encoding="utf-8") as f:
                    f.write(content)

    sources = os.path.join(temp_directory, "sources")
    os.makedirs(sources)
    create_structure(sources, structure)
    return sources


@pytest.fixture
def sample_config(temp_directory, sample_sources):
    """Effective configuration pointing every source into the temp directory."""
    return merge_config(
        DEFAULT_CONFIG,
        {
            "backup_root": os.path.join(temp_directory, "backups"),
            "databases": {
                "redis": {
                    "rdb_path": os.path.join(sample_sources, "redis", "dump.rdb"),
                    "owner": None,
                    "save_timeout": 0,
                },
            },
            "files": [
                {
                    "name": "root_projects",
                    "path": os.path.join(sample_sources, "projects"),
                    "group": "projects",
                    "tolerate_errors": True,
                },
                {
                    "name": "nginx_config",
                    "path": os.path.join(sample_sources, "nginx"),
                    "group": "nginx",
                    "tolerate_errors": False,
                },
                {
                    "name": "docker_volumes",
                    "path": os.path.join(sample_sources, "missing-docker"),
                    "group": "docker",
                    "tolerate_errors": True,
                },
            ],
            "configs": {
                "paths": [
                    os.path.join(sample_sources, "etc", "hosts"),
                    os.path.join(sample_sources, "etc", "hostname"),
                ],
                "crontab": True,
            },
            "manifest": {"hostname": "testhost"},
        },
    )


@pytest.fixture(autouse=True)
def isolate_filesystem(temp_directory, monkeypatch):
    """Isolate filesystem operations to temporary directory."""
    monkeypatch.chdir(temp_directory)
    monkeypatch.delenv("VPS_BACKUP_CONFIG", raising=False)
    return temp_directory
