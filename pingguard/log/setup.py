import logging
import sys

from pingguard.local.config import effective_settings as config
from pingguard.log.handler import LokiHandler

MAIN_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'


class MainFormatter(logging.Formatter):
    """A custom formatter to handle regular logs and raw child process output."""

    def __init__(self) -> None:
        super().__init__(MAIN_FORMAT)

    def format(self, record):
        # If the log is relayed child output, just return the raw line.
        if record.name.startswith('proc.'):
            return record.getMessage()
        return super().format(record)


def setup_logging(console_level: int = logging.INFO) -> None:
    """
    Configures the root logger for the supervisor.
    This sets up handlers for the console and optionally Loki,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    if root_logger.hasHandlers():
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- Loki Handler (conditional) ---
    if config.LOKI_ENABLED:
        try:
            loki_handler = LokiHandler(url=config.LOKI_URL, org_id=config.LOKI_ORG_ID)
            loki_handler.setLevel(logging.INFO) # Avoid spamming Loki with DEBUG logs
            loki_handler.setFormatter(logging.Formatter(MAIN_FORMAT))
            root_logger.addHandler(loki_handler)
            root_logger.info(f"Grafana Loki logging handler initialized for {config.LOKI_URL}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
