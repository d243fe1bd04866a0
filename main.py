#!/usr/bin/env python3
"""
Message Header Cache - Main Entry Point

Opens the local header cache described by the configuration file, performs an
initial synchronization and, when ``cache.background_refresh`` is enabled,
keeps it synchronized until interrupted.
"""

import sys
import threading
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from engine.config import ConfigManager
from logging_config import get_logger
from utils.paths import init_app_paths


def main() -> int:
    """Main application entry point."""
    from core.errors import HeaderCacheError
    from core.header_cache import HeaderCache
    from datasources.http import close_shared_session
    from services.refresher import BackgroundRefresher

    init_app_paths()
    config_manager = ConfigManager()
    config = config_manager.load_config()
    log = get_logger(__name__, config.get('logging'))

    errors = config_manager.validate_config()
    if errors:
        for err in errors:
            log.error(f"Configuration error: {err}")
        return 2

    try:
        cache = HeaderCache.from_config(config)
    except HeaderCacheError as e:
        log.error(f"Failed to open header cache: {e}")
        return 1

    try:
        with cache:
            try:
                cache.synchronize()
            except HeaderCacheError as e:
                log.warning(f"Initial synchronization failed: {e}")
            log.info(f"Header cache ready: {cache.stats()}")

            cache_cfg = config_manager.get_cache_config()
            if not cache_cfg.get('background_refresh'):
                return 0

            refresher = BackgroundRefresher(cache, cache_cfg.get('refresh_interval_seconds', 60))
            refresher.start()
            try:
                threading.Event().wait()
            except KeyboardInterrupt:
                log.info("Interrupted, shutting down")
            finally:
                refresher.stop()
    finally:
        close_shared_session()
    return 0


if __name__ == "__main__":
    sys.exit(main())
