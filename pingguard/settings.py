"""
This module contains the default configuration settings for pingguard.
It defines the listener, timeout, termination and logging settings used by
the supervisor. Every value can be overridden from the environment (or a
.env file), and the listener/timeout values again from the command line.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=False)


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


#* --- Heartbeat Listener ---
LISTEN_ADDR = os.getenv("PINGGUARD_LISTEN_ADDR", "0.0.0.0:12345")

#* --- Timeout Monitor ---
TIMEOUT_SECS = os.getenv("PINGGUARD_TIMEOUT_SECS", "5")  # parsed by MergedSettings.validate

#* --- Termination ---
KILL_GRACE_PERIOD = os.getenv("PINGGUARD_KILL_GRACE_PERIOD", "0.1")       # seconds after SIGKILL before checking status
SHUTDOWN_GRACE_PERIOD = os.getenv("PINGGUARD_SHUTDOWN_GRACE_PERIOD", "1.0") # seconds the signal handler waits for the monitor
LAUNCH_FAILURE_WAIT = 1.0  # seconds to wait for a child we could not identify

#* --- Process Identity ---
PROCESS_TITLE = os.getenv("PINGGUARD_PROCESS_TITLE", "pingguard")

#* --- Logging ---
LOG_LEVEL = os.getenv("PINGGUARD_LOG_LEVEL", "INFO").upper()
CHILD_OUTPUT_RELAY = _env_flag("PINGGUARD_CHILD_OUTPUT_RELAY", "True")

# Grafana Loki (for observability)
LOKI_ENABLED = _env_flag("PINGGUARD_LOKI_ENABLED")
LOKI_URL = os.getenv("PINGGUARD_LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("PINGGUARD_LOKI_ORG_ID", "fake")
LOG_BUFFER_FLUSH_INTERVAL = 5
LOG_BUFFER_BATCH_SIZE = 200

#* --- Exit Codes ---
EXIT_CODE_OK = 0
EXIT_CODE_TIMEOUT = 1
EXIT_CODE_WAIT_ERROR = 2
EXIT_CODE_LISTENER_FAILED = 3
EXIT_CODE_STARTUP_FAILURE = 1  # configuration error or launch failure
EXIT_CODE_SIGNAL_BASE = 128    # signal-handler path exits with 128 + signum
