"""Static content served while a site is in maintenance mode."""

from __future__ import annotations

import shutil
from enum import Enum
from pathlib import Path
from typing import Union

from ..utils.logging import get_logger

logger = get_logger(__name__)

MAINTENANCE_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Maintenance</title>
    <style>
        html, body { height: 100%; margin: 0; font-family: sans-serif; }
        body { display: flex; align-items: center; justify-content: center; background-color: #f8f9fa; }
        .content-box { max-width: 450px; padding: 1.5rem; text-align: center; }
        .content-box h2 { color: #007AC1; }
    </style>
</head>
<body>
    <div class="content-box">
        <h2>We'll be back soon</h2>
        <p>The site is undergoing scheduled maintenance.</p>
        <p>Please try again later.</p>
    </div>
</body>
</html>
"""


class MaintenanceState(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    UNKNOWN = "unknown"


def prepare_maintenance_content(
    app_path: Union[str, Path], maintenance_path: Union[str, Path]
) -> Path:
    """Make sure the maintenance directory can be served.

    Creates the directory and a default ``index.html`` when missing, and
    copies the application's ``web.config`` so handler mappings keep working.
    Existing content is left untouched.
    """
    maintenance_dir = Path(maintenance_path)
    if not maintenance_dir.exists():
        maintenance_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Created maintenance directory %s", maintenance_dir)

    index = maintenance_dir / "index.html"
    if not index.exists():
        index.write_text(MAINTENANCE_PAGE, encoding="utf-8")
        logger.info("Maintenance page created")

    app_web_config = Path(app_path) / "web.config"
    maintenance_web_config = maintenance_dir / "web.config"
    if app_web_config.is_file() and not maintenance_web_config.exists():
        shutil.copy2(app_web_config, maintenance_web_config)
        logger.info("Copied web.config to maintenance folder")

    return maintenance_dir
