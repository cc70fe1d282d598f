"""Backup storage layout, manifests and retention."""

import fnmatch
import glob
import json
import logging
import os
import re
import stat
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

from vpsbackup.utils.files import FileManager, human_size

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
TIMESTAMP_PATTERN = re.compile(r"\d{8}_\d{6}")
ARTIFACT_PATTERN = re.compile(
    r"^(?P<name>.+)_(?P<timestamp>\d{8}_\d{6})\.(?P<ext>sql|rdb|tar|txt)(?:\.gz)?$"
)

DATABASE_CATEGORIES = ("postgresql", "mysql", "redis")
CATEGORIES = DATABASE_CATEGORIES + ("files", "configs")

CATEGORY_LABELS = {
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "redis": "Redis",
    "files": "File",
    "configs": "Config",
}

MANIFEST_PREFIX = "backup_manifest_"
DAY_SECONDS = 86400
WEEK_DAYS = 7
MONTH_DAYS = 30

# (directory relative to the root, filename patterns) per retention group
DAILY_PRUNE_GROUPS = {
    "databases": ["*.sql.gz", "*.rdb.gz"],
    "files": ["*.tar.gz"],
    "configs": ["*.tar.gz", "*.txt"],
}


@dataclass
class Artifact:
    """A single backup file produced by one run."""

    category: str
    name: str
    timestamp: str
    path: str
    size: int = 0
    sha256: Optional[str] = None

    @property
    def filename(self) -> str:
        return os.path.basename(self.path)

    def to_record(self, root: str) -> Dict[str, Any]:
        record = asdict(self)
        record["path"] = os.path.relpath(self.path, root)
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any], root: str) -> "Artifact":
        return cls(
            category=record["category"],
            name=record["name"],
            timestamp=record["timestamp"],
            path=os.path.join(root, record["path"]),
            size=record.get("size", 0),
            sha256=record.get("sha256"),
        )


def make_timestamp(now: Optional[datetime] = None) -> str:
    """Format the run timestamp token shared by every artifact of a run."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def file_age_days(path: str, now: datetime) -> int:
    """Whole days since the file was last modified (``find -mtime`` rounding)."""
    age_seconds = now.timestamp() - os.stat(path).st_mtime
    return int(age_seconds // DAY_SECONDS)


class BackupStorage:
    """Manages the backup root: layout, naming, listing, manifests and pruning."""

    def __init__(
        self,
        backup_root: str,
        file_groups: Optional[List[str]] = None,
        file_manager: Optional[FileManager] = None,
        verbose: bool = False,
    ):
        """
        Initialize backup storage manager.

        Args:
            backup_root: Root directory of all backups
            file_groups: Subdirectories of ``files/`` used by file sources
            file_manager: File helper used for archives and checksums
            verbose: Enable verbose output
        """
        self.root = backup_root
        self.file_groups = file_groups or ["projects", "nginx", "docker"]
        self.files = file_manager or FileManager(verbose=verbose)
        self.verbose = verbose

        templates_dir = os.path.join(os.path.dirname(__file__), "..", "templates")
        self.jinja_env = Environment(loader=FileSystemLoader(templates_dir), trim_blocks=True, lstrip_blocks=True)

    # Layout

    def initialize(self) -> List[str]:
        """
        Create the directory structure under the backup root (mode 0700).

        Returns:
            List[str]: Directories that did not exist before
        """
        structure = {
            "databases": {category: {} for category in DATABASE_CATEGORIES},
            "files": {group: {} for group in self.file_groups},
            "configs": {},
            "logs": {},
        }
        created = self.files.create_directory_structure(self.root, structure, mode=0o700)

        if self.verbose:
            logger.info(f"Backup storage ready at {self.root}")

        return created

    def category_dir(self, category: str, group: Optional[str] = None) -> str:
        """Directory holding artifacts of a category (and file group)."""
        if category in DATABASE_CATEGORIES:
            return os.path.join(self.root, "databases", category)
        if category == "files":
            return os.path.join(self.root, "files", group) if group else os.path.join(self.root, "files")
        if category == "configs":
            return os.path.join(self.root, "configs")
        raise ValueError(f"Unknown backup category: {category}")

    def artifact_path(
        self,
        category: str,
        name: str,
        timestamp: str,
        ext: str,
        group: Optional[str] = None,
        compressed: bool = True,
    ) -> str:
        """Build ``<dir>/<name>_<timestamp>.<ext>[.gz]``."""
        filename = f"{name}_{timestamp}.{ext}"
        if compressed:
            filename += ".gz"
        return os.path.join(self.category_dir(category, group), filename)

    def log_path(self, timestamp: str) -> str:
        return os.path.join(self.root, "logs", f"backup_{timestamp}.log")

    def manifest_path(self, timestamp: str, fmt: str = "txt") -> str:
        return os.path.join(self.root, f"{MANIFEST_PREFIX}{timestamp}.{fmt}")

    def rollup_dir(self, kind: str) -> str:
        return os.path.join(self.root, kind)

    def timestamp_in_use(self, timestamp: str) -> bool:
        """True when a run with this timestamp already left a log or manifest."""
        return any(
            os.path.exists(path)
            for path in (
                self.log_path(timestamp),
                self.manifest_path(timestamp, "txt"),
                self.manifest_path(timestamp, "json"),
            )
        )

    # Listing

    def parse_artifact(self, path: str, category: str) -> Optional[Artifact]:
        """Build an Artifact from a filename, or None if it does not follow the naming scheme."""
        match = ARTIFACT_PATTERN.match(os.path.basename(path))
        if not match:
            return None

        try:
            size = os.path.getsize(path)
        except OSError:
            size = 0

        return Artifact(
            category=category,
            name=match.group("name"),
            timestamp=match.group("timestamp"),
            path=path,
            size=size,
        )

    def list_artifacts(self, category: str, timestamp: Optional[str] = None) -> List[Artifact]:
        """
        List artifacts of a category, most recently modified first.

        Args:
            category: One of CATEGORIES
            timestamp: Only return artifacts of this run

        Returns:
            List[Artifact]: Matching artifacts
        """
        directory = self.category_dir(category)
        if not os.path.isdir(directory):
            return []

        if category == "files":
            candidates = glob.glob(os.path.join(directory, "*", "*"))
        else:
            candidates = glob.glob(os.path.join(directory, "*"))

        artifacts = []
        for path in candidates:
            if not os.path.isfile(path):
                continue
            artifact = self.parse_artifact(path, category)
            if artifact is None:
                continue
            if timestamp and artifact.timestamp != timestamp:
                continue
            artifacts.append(artifact)

        artifacts.sort(key=lambda a: os.path.getmtime(a.path), reverse=True)
        return artifacts

    def run_artifacts(self, timestamp: str) -> List[Artifact]:
        """Every artifact in the category directories carrying this run timestamp."""
        artifacts = []
        for category in CATEGORIES:
            artifacts.extend(self.list_artifacts(category, timestamp=timestamp))
        artifacts.sort(key=lambda a: a.path)
        return artifacts

    def available_timestamps(self) -> List[str]:
        """Run timestamps that have a database artifact or a manifest, oldest first."""
        timestamps = set()

        for category in DATABASE_CATEGORIES:
            for artifact in self.list_artifacts(category):
                timestamps.add(artifact.timestamp)

        for path in glob.glob(os.path.join(self.root, f"{MANIFEST_PREFIX}*")):
            match = TIMESTAMP_PATTERN.search(os.path.basename(path))
            if match:
                timestamps.add(match.group(0))

        return sorted(timestamps)

    def latest_log(self) -> Optional[str]:
        """Most recently modified ``backup_*.log`` file."""
        logs = glob.glob(os.path.join(self.root, "logs", "backup_*.log"))
        if not logs:
            return None
        return max(logs, key=os.path.getmtime)

    # Manifests

    def write_manifest(
        self,
        timestamp: str,
        artifacts: List[Artifact],
        hostname: str,
        timezone: str,
        warnings: Optional[List[str]] = None,
        skipped: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, str]:
        """
        Write the text and JSON manifests of a run.

        Checksums are computed here for every artifact that has none yet.

        Returns:
            Dict[str, str]: Paths of the ``txt`` and ``json`` manifests
        """
        now = now or datetime.now()

        for artifact in artifacts:
            artifact.size = os.path.getsize(artifact.path)
            if artifact.sha256 is None:
                artifact.sha256 = self.files.sha256_file(artifact.path)

        total_size = self.files.directory_size(self.root)

        text = self.jinja_env.get_template("manifest.txt.j2").render(
            date=now.strftime("%a %b %d %H:%M:%S %Y"),
            hostname=hostname,
            timezone=timezone,
            entries=[self._listing_entry(artifact.path) for artifact in artifacts],
            total_size=human_size(total_size),
        )

        record = {
            "version": 1,
            "timestamp": timestamp,
            "created": now.isoformat(),
            "hostname": hostname,
            "timezone": timezone,
            "backup_root": self.root,
            "artifacts": [artifact.to_record(self.root) for artifact in artifacts],
            "skipped": list(skipped or []),
            "warnings": list(warnings or []),
            "total_size": total_size,
        }

        paths = {"txt": self.manifest_path(timestamp, "txt"), "json": self.manifest_path(timestamp, "json")}

        with open(paths["txt"], "w", encoding="utf-8") as f:
            f.write(text)

        with open(paths["json"], "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)

        return paths

    def load_manifest(self, timestamp: str) -> Optional[Dict[str, Any]]:
        """Load the JSON manifest of a run, or None if it has none."""
        path = self.manifest_path(timestamp, "json")
        if not os.path.exists(path):
            return None

        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def manifest_artifacts(self, timestamp: str) -> Optional[List[Artifact]]:
        """Artifacts recorded in a run's JSON manifest, or None without manifest."""
        manifest = self.load_manifest(timestamp)
        if manifest is None:
            return None
        return [Artifact.from_record(record, self.root) for record in manifest.get("artifacts", [])]

    def latest_manifest_timestamp(self) -> Optional[str]:
        manifests = glob.glob(os.path.join(self.root, f"{MANIFEST_PREFIX}*.json"))
        timestamps = []
        for path in manifests:
            match = TIMESTAMP_PATTERN.search(os.path.basename(path))
            if match:
                timestamps.append(match.group(0))
        return max(timestamps) if timestamps else None

    # Usage

    def usage_report(self) -> List[Dict[str, Any]]:
        """Size of every top-level entry in the backup root (``du -sh root/*``)."""
        if not os.path.isdir(self.root):
            return []

        report = []
        for name in sorted(os.listdir(self.root)):
            path = os.path.join(self.root, name)
            if name.startswith("."):
                continue
            size = self.files.directory_size(path)
            report.append({"path": path, "size": size, "size_human": human_size(size)})
        return report

    # Retention

    def prune_directory(self, directory: str, patterns: List[str], max_age_days: int, now: datetime) -> List[str]:
        """
        Delete files matching ``patterns`` under ``directory`` older than ``max_age_days``.

        A file is deleted when its age in whole days exceeds the threshold,
        the same rounding ``find -mtime +N`` uses.

        Returns:
            List[str]: Deleted paths
        """
        deleted = []
        if not os.path.isdir(directory):
            return deleted

        for dirpath, _dirnames, filenames in os.walk(directory):
            for filename in filenames:
                if not any(fnmatch.fnmatch(filename, pattern) for pattern in patterns):
                    continue
                path = os.path.join(dirpath, filename)
                if file_age_days(path, now) > max_age_days:
                    os.remove(path)
                    deleted.append(path)

        return sorted(deleted)

    def prune(self, retention: Dict[str, int], now: Optional[datetime] = None) -> Dict[str, List[str]]:
        """
        Apply the daily, log and manifest retention thresholds.

        Args:
            retention: Retention section of the configuration
            now: Reference time (defaults to now)

        Returns:
            Dict[str, List[str]]: Deleted paths per retention group
        """
        now = now or datetime.now()
        deleted = {}

        for group, patterns in DAILY_PRUNE_GROUPS.items():
            deleted[group] = self.prune_directory(
                os.path.join(self.root, group), patterns, retention["daily_days"], now
            )

        deleted["logs"] = self.prune_directory(os.path.join(self.root, "logs"), ["*.log"], retention["log_days"], now)

        manifest_days = retention.get("manifest_days", 0)
        deleted["manifests"] = []
        if manifest_days:
            for path in glob.glob(os.path.join(self.root, f"{MANIFEST_PREFIX}*")):
                if os.path.isfile(path) and file_age_days(path, now) > manifest_days:
                    os.remove(path)
                    deleted["manifests"].append(path)
            deleted["manifests"].sort()

        return deleted

    def create_rollup(self, kind: str, timestamp: str, max_age_days: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Archive the current databases/, files/ and configs/ trees into one file.

        Args:
            kind: ``weekly`` or ``monthly``
            timestamp: Run timestamp
            max_age_days: Age threshold for older rollups of the same kind
            now: Reference time for pruning

        Returns:
            Dict[str, Any]: ``archive`` path and ``deleted`` rollups
        """
        directory = self.rollup_dir(kind)
        os.makedirs(directory, exist_ok=True)

        archive_path = os.path.join(directory, f"{kind}_backup_{timestamp}.tar.gz")
        sources = [os.path.join(self.root, name) for name in ("databases", "files", "configs")]
        self.files.archive_paths(archive_path, [path for path in sources if os.path.isdir(path)], tolerate_errors=False)

        deleted = self.prune_directory(directory, ["*.tar.gz"], max_age_days, now or datetime.now())
        return {"archive": archive_path, "deleted": deleted}

    def _listing_entry(self, path: str) -> Dict[str, str]:
        info = os.stat(path)
        return {
            "mode": stat.filemode(info.st_mode),
            "owner": _user_name(info.st_uid),
            "group": _group_name(info.st_gid),
            "size": human_size(info.st_size),
            "mtime": datetime.fromtimestamp(info.st_mtime).strftime("%b %d %H:%M"),
            "path": path,
        }


def _user_name(uid: int) -> str:
    try:
        import pwd

        return pwd.getpwuid(uid).pw_name
    except (ImportError, KeyError):
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        import grp

        return grp.getgrgid(gid).gr_name
    except (ImportError, KeyError):
        return str(gid)
