"""
Device ID - Stable per-install identifier sent to the ledger.

The ledger keys balances by device. The id is generated once and persisted;
a configured override wins (useful for support tooling).
"""

import uuid
from pathlib import Path

from structlog import get_logger

from credit_redemption.config import Settings

logger = get_logger(__name__)


def load_or_create_device_id(path: Path) -> str:
    """Read the persisted device id, creating and saving a new one when absent."""
    try:
        existing = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        existing = ""

    if existing:
        return existing

    device_id = str(uuid.uuid4()).upper()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(device_id, encoding="utf-8")
    logger.info("device_id_created", path=str(path))
    return device_id


def current_device_id(settings: Settings) -> str:
    """Device id for this process."""
    if settings.device_id:
        return settings.device_id
    return load_or_create_device_id(settings.device_id_path)
