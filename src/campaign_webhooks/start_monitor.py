#!/usr/bin/env python3
"""
Webhook Monitor Startup Script
Starts the campaign webhook monitoring service
"""
import signal
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

from campaign_webhooks.loggers import logger


def load_environment():
    """Load the .env file from the project root, the package or the working directory"""
    candidate_paths = [
        Path(__file__).resolve().parent.parent.parent / ".env",  # project root
        Path(__file__).resolve().parent / ".env",  # package directory
        Path.cwd() / ".env",  # current working directory
    ]

    for env_path in candidate_paths:
        if env_path.exists():
            logger.info(f"Loading environment from {env_path}")
            load_dotenv(env_path)
            return True

    logger.warning("No .env file found in any expected location")
    return False


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    logger.info(f"Received signal {signum}, shutting down monitor...")
    sys.exit(0)


def main():
    """Main entry point for monitor service"""
    load_environment()

    # Imported after .env is loaded so DATABASE_URL is picked up
    from campaign_webhooks.mysql.db import init_db
    from campaign_webhooks.webhook_monitor.monitor_cli import setup_monitoring_from_env
    from campaign_webhooks.webhook_monitor.monitoring_service_api import (
        WebhookMonitoringService,
    )

    service = None
    try:
        # Setup signal handlers
        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

        init_db()

        # Load configuration from environment
        settings = setup_monitoring_from_env()

        # Create and start monitoring service
        service = WebhookMonitoringService(settings)

        logger.info("Starting Webhook Monitoring Service...")
        result = service.start()

        if result["success"]:
            logger.info(f"Monitor started successfully: {result['message']}")

            # Keep the process running
            try:
                while True:
                    time.sleep(1)
            except KeyboardInterrupt:
                logger.info("Received keyboard interrupt, stopping monitor...")
        else:
            logger.error(
                f"Failed to start monitor: {result.get('error', 'Unknown error')}"
            )
            sys.exit(1)

    except Exception as e:
        logger.error(f"Monitor startup failed: {e}")
        sys.exit(1)
    finally:
        # Cleanup
        if service is not None:
            service.stop()
        logger.info("Monitor service stopped")


if __name__ == "__main__":
    main()
