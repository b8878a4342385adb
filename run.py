#!/usr/bin/env python3
"""Process runner: schedules backup cycles and serves the status endpoints"""
import os
import sys

from vmbackup_cron import create_app
from vmbackup_cron.config import ConfigurationError

if __name__ == '__main__':
    try:
        app = create_app()
    except ConfigurationError as e:
        sys.stderr.write(f"Invalid configuration: {e}\n")
        sys.exit(2)

    # The reloader would start a second scheduler
    port = int(os.environ.get('PORT', 8420))
    app.run(host='0.0.0.0', port=port, debug=False, use_reloader=False)
