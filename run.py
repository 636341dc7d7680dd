#!/usr/bin/env python3
"""
Entry point for the League Service.

Usage:
    python run.py                    # Run the API server (default)
    python run.py server             # Run the API server explicitly
    python run.py scheduler          # Run the periodic tournament scheduler on its own

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 5000)
    LOG_LEVEL: Root log level (default: INFO)
    SCHEDULER_ENABLED: Start the scheduler thread inside the server (default: true)
"""
import logging
import os
import sys


def configure_logging():
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )


def run_server():
    """Run the league API server."""
    from league.app import create_app

    app = create_app()
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    logging.getLogger(__name__).info(f"Starting League Service on port {port}...")
    # one scheduler thread per process
    app.run(host='0.0.0.0', port=port, debug=debug, use_reloader=False)


def run_scheduler():
    """Run the periodic scheduler as a standalone process."""
    os.environ['SCHEDULER_ENABLED'] = 'false'
    from league.app import create_app

    app = create_app()
    logging.getLogger(__name__).info(
        f"Starting tournament scheduler every {app.config['SCHEDULER_INTERVAL_SECONDS']}s..."
    )
    app.scheduler.run_forever()


if __name__ == '__main__':
    configure_logging()
    mode = sys.argv[1] if len(sys.argv) > 1 else 'server'

    if mode == 'server':
        run_server()
    elif mode == 'scheduler':
        run_scheduler()
    else:
        print(f"Unknown mode: {mode}")
        print("Usage: python run.py [server|scheduler]")
        sys.exit(1)
