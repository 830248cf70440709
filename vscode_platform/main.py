#!/usr/bin/env python3
"""
VS Code Platform API - Main entry point

A Flask application for managing groups and code-server workspaces in Kubernetes.
"""

import logging
import sys
from vscode_platform import create_app
from vscode_platform.config import app_config
from vscode_platform.workspace.service import workspace_service

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, app_config.LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def main():
    """Main entry point"""
    configure_logging()
    try:
        app = create_app()
        logger.info(f"Starting VS Code Platform API on port {app_config.PORT} ({app_config.APP_ENV})")
        app.run(
            host='0.0.0.0',
            port=app_config.PORT,
            debug=False,
            threaded=True
        )
    except Exception as e:
        logger.error(f"Failed to start application: {e}", exc_info=True)
        sys.exit(1)
    finally:
        workspace_service.shutdown()


if __name__ == '__main__':
    main()
