import logging
import os
from pathlib import Path

import sentry_sdk
from dotenv import load_dotenv
from sentry_sdk.integrations.logging import LoggingIntegration

__version__ = "0.4.0"

# Load environment variables early so SENTRY_DSN and BARSIM_* are visible to settings
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")

# Initialize Sentry only when a DSN is provided
_dsn = os.getenv("SENTRY_DSN")
if _dsn:
    sentry_sdk.init(
        dsn=_dsn,
        integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0") or 0),
        environment=os.getenv("SENTRY_ENVIRONMENT", "local"),
        release=__version__,
    )
