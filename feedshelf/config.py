"""Centralized configuration for feedshelf."""

import os
import logging
from dataclasses import dataclass

log = logging.getLogger("feedshelf.config")

# =========================
# File paths
# =========================
DATA_DIR: str = os.getenv("FEEDSHELF_DATA_DIR", "data")
METADATA_FILENAME: str = os.getenv("FEEDSHELF_METADATA_FILE", "feeds.json")
STORAGE_DIRNAME: str = os.getenv("FEEDSHELF_STORAGE_DIR", "storage")

# =========================
# Retention
# =========================
RETENTION_DAYS: int = int(os.getenv("FEEDSHELF_RETENTION_DAYS", "30"))
PRUNE_DAYS: int = int(os.getenv("FEEDSHELF_PRUNE_DAYS", "30"))

# =========================
# Fetch monitoring
# =========================
FAILURE_ALERT_THRESHOLD: int = int(os.getenv("FAILURE_ALERT_THRESHOLD", "5"))
FETCH_COOLDOWN_MAX_MINUTES: float = float(os.getenv("FETCH_COOLDOWN_MAX_MINUTES", "60"))

# =========================
# Logging
# =========================
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


@dataclass(frozen=True)
class StoreConfig:
    data_dir: str = DATA_DIR
    retention_days: int = RETENTION_DAYS
    metadata_filename: str = METADATA_FILENAME
    storage_dirname: str = STORAGE_DIRNAME

    @property
    def metadata_path(self) -> str:
        return os.path.join(self.data_dir, self.metadata_filename)

    @property
    def storage_dir(self) -> str:
        return os.path.join(self.data_dir, self.storage_dirname)


def validate_env() -> None:
    """Validate numeric settings. Call at startup."""
    bad = []
    if RETENTION_DAYS <= 0:
        bad.append("FEEDSHELF_RETENTION_DAYS")
    if PRUNE_DAYS <= 0:
        bad.append("FEEDSHELF_PRUNE_DAYS")
    if FAILURE_ALERT_THRESHOLD <= 0:
        bad.append("FAILURE_ALERT_THRESHOLD")
    if bad:
        raise EnvironmentError(
            f"Settings must be positive: {', '.join(bad)}"
        )
    if RETENTION_DAYS < PRUNE_DAYS:
        log.warning(
            "FEEDSHELF_RETENTION_DAYS (%d) is shorter than FEEDSHELF_PRUNE_DAYS (%d); "
            "writes will drop items before prune would.",
            RETENTION_DAYS, PRUNE_DAYS,
        )


def load_store_config(data_dir: str = "") -> StoreConfig:
    """Build a StoreConfig from the environment, optionally overriding the data dir."""
    return StoreConfig(
        data_dir=data_dir or DATA_DIR,
        retention_days=RETENTION_DAYS,
        metadata_filename=METADATA_FILENAME,
        storage_dirname=STORAGE_DIRNAME,
    )
