"""Configuration schema and defaults for vps-backup."""

DEFAULT_CONFIG = {
    "backup_root": "/var/backups/vps",
    "retention": {
        "daily_days": 7,
        "weekly_count": 4,
        "monthly_count": 3,
        "log_days": 30,
        "manifest_days": 30,
    },
    "databases": {
        "postgresql": {
            "enabled": True,
            "service": "postgresql",
            "system_user": "postgres",
        },
        "mysql": {
            "enabled": True,
            "service": "mysql",
            "exclude": ["information_schema", "performance_schema", "mysql", "sys"],
        },
        "redis": {
            "enabled": True,
            "service": "redis-server",
            "rdb_path": "/var/lib/redis/dump.rdb",
            "owner": "redis",
            "save_timeout": 2,
        },
    },
    "files": [
        {
            "name": "root_projects",
            "path": "/root/projects",
            "group": "projects",
            "tolerate_errors": True,
        },
        {
            "name": "nginx_config",
            "path": "/etc/nginx",
            "group": "nginx",
            "tolerate_errors": False,
        },
        {
            "name": "docker_volumes",
            "path": "/var/lib/docker/volumes",
            "group": "docker",
            "tolerate_errors": True,
        },
    ],
    "configs": {
        "paths": [
            "/etc/hosts",
            "/etc/hostname",
            "/etc/fstab",
            "/etc/crontab",
            "/etc/environment",
            "/etc/nginx",
            "/etc/redis",
            "/etc/mysql",
            "/etc/postgresql",
            "/etc/systemd/system/*.service",
        ],
        "crontab": True,
    },
    "manifest": {
        "hostname": None,
    },
    "schedule": {
        "cron": "0 2 * * *",
        "command": "/usr/local/bin/vps-backup-run",
        "log": "/var/backups/vps/logs/cron.log",
        "marker": "vps-backup",
    },
    "commands": {
        "timeout": None,
    },
    "verify": {
        "recent_count": 5,
        "log_tail_lines": 20,
    },
}

_NON_NEGATIVE_INT = {"type": "integer", "minimum": 0}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "backup_root": {
            "type": "string",
            "pattern": r"^/",
            "description": "Absolute path of the backup root directory",
        },
        "retention": {
            "type": "object",
            "properties": {
                "daily_days": _NON_NEGATIVE_INT,
                "weekly_count": _NON_NEGATIVE_INT,
                "monthly_count": _NON_NEGATIVE_INT,
                "log_days": _NON_NEGATIVE_INT,
                "manifest_days": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Days to keep run manifests (0 keeps them forever)",
                },
            },
            "required": ["daily_days", "weekly_count", "monthly_count", "log_days"],
            "additionalProperties": False,
        },
        "databases": {
            "type": "object",
            "properties": {
                "postgresql": {
                    "type": "object",
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "service": {"type": "string", "minLength": 1},
                        "system_user": {"type": "string", "minLength": 1},
                    },
                    "required": ["enabled", "service"],
                    "additionalProperties": False,
                },
                "mysql": {
                    "type": "object",
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "service": {"type": "string", "minLength": 1},
                        "exclude": {
                            "type": "array",
                            "items": {"type": "string"},
                        },
                    },
                    "required": ["enabled", "service"],
                    "additionalProperties": False,
                },
                "redis": {
                    "type": "object",
                    "properties": {
                        "enabled": {"type": "boolean"},
                        "service": {"type": "string", "minLength": 1},
                        "rdb_path": {"type": "string", "pattern": r"^/"},
                        "owner": {"type": ["string", "null"]},
                        "save_timeout": {"type": "number", "minimum": 0},
                    },
                    "required": ["enabled", "service", "rdb_path"],
                    "additionalProperties": False,
                },
            },
            "additionalProperties": False,
        },
        "files": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "pattern": r"^[A-Za-z0-9][A-Za-z0-9_.-]*$",
                    },
                    "path": {"type": "string", "pattern": r"^/"},
                    "group": {
                        "type": "string",
                        "pattern": r"^[A-Za-z0-9][A-Za-z0-9_.-]*$",
                    },
                    "tolerate_errors": {"type": "boolean", "default": True},
                },
                "required": ["name", "path", "group"],
                "additionalProperties": False,
            },
        },
        "configs": {
            "type": "object",
            "properties": {
                "paths": {"type": "array", "items": {"type": "string"}},
                "crontab": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
        "manifest": {
            "type": "object",
            "properties": {
                "hostname": {"type": ["string", "null"]},
            },
            "additionalProperties": False,
        },
        "schedule": {
            "type": "object",
            "properties": {
                "cron": {
                    "type": "string",
                    "pattern": r"^(\S+\s+){4}\S+$",
                    "description": "Five-field cron expression",
                },
                "command": {"type": "string", "minLength": 1},
                "log": {"type": ["string", "null"]},
                "marker": {"type": "string", "minLength": 1},
            },
            "required": ["cron", "command", "marker"],
            "additionalProperties": False,
        },
        "commands": {
            "type": "object",
            "properties": {
                "timeout": {"type": ["number", "null"], "exclusiveMinimum": 0},
            },
            "additionalProperties": False,
        },
        "verify": {
            "type": "object",
            "properties": {
                "recent_count": {"type": "integer", "minimum": 1},
                "log_tail_lines": {"type": "integer", "minimum": 0},
            },
            "additionalProperties": False,
        },
    },
    "required": ["backup_root", "retention"],
    "additionalProperties": False,
}
