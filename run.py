#!/usr/bin/env python3
"""
Entry point for the Tournament Platform.

Usage:
    python run.py                    # Run the tournament service (default)
    python run.py service            # Run the tournament service explicitly
    python run.py scheduler          # Run the orchestrator scheduler

Environment Variables:
    FLASK_ENV: development or production (default: development)
    PORT: Port to run the tournament service on (default: 5000)
    LOG_LEVEL: Logging level (default: INFO)
"""
import logging
import os
import signal
import sys


def configure_logging():
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )


def run_service():
    """Run the tournament service HTTP API."""
    from tournament_service.app import create_app

    env = os.getenv('FLASK_ENV', 'development')
    app = create_app(env)
    port = int(os.getenv('PORT', 5000))

    logging.getLogger(__name__).info(f"Starting Tournament Service on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=env == 'development')


def run_scheduler():
    """Run the orchestrator's periodic tasks until interrupted."""
    from orchestrator.config import config
    from orchestrator.context import OrchestratorContext
    from orchestrator.scheduler import Orchestrator

    env = os.getenv('FLASK_ENV', 'development')
    orchestrator = Orchestrator(OrchestratorContext(config.get(env, config['default'])))

    def shutdown(signum, frame):
        logging.getLogger(__name__).info(f"Received signal {signum}, stopping scheduler")
        orchestrator.stop()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)
    orchestrator.run_forever()


if __name__ == '__main__':
    configure_logging()
    mode = sys.argv[1] if len(sys.argv) > 1 else 'service'

    if mode == 'service':
        run_service()
    elif mode == 'scheduler':
        run_scheduler()
    else:
        print(f"Unknown mode: {mode}")
        print("Usage: python run.py [service|scheduler]")
        sys.exit(1)
