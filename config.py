import os
import log
from dotenv import load_dotenv

# Load .env file into environment
load_dotenv()


def _split_tokens(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [token.strip() for token in raw.split(",") if token.strip()]


# Names accepted by services.statistics.p_value_from_chi_square
P_VALUE_METHODS = ("chi2", "legacy")


class Config:
    def __init__(self):
        # empty VALKEY_HOST selects the in-process cache
        self.valkey_host = os.getenv("VALKEY_HOST", "localhost")
        self.valkey_port = int(os.getenv("VALKEY_PORT", 6379))
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./ab_testing.db")
        self.log_level = os.getenv("LOG_LEVEL", default="INFO")
        # empty LOG_FILE logs to stdout only
        self.log_file = os.getenv("LOG_FILE", "ab_testing_service.log")
        self.valid_tokens = _split_tokens(os.getenv("VALID_TOKENS"))
        self.celery_broker_url = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
        self.celery_backend_url = os.getenv("CELERY_BACKEND_URL", "redis://localhost:6379/1")

        # "chi2" for the exact chi-square tail, "legacy" for exp(-chi2/2)
        self.p_value_method = os.getenv("P_VALUE_METHOD", "chi2").lower()
        if self.p_value_method not in P_VALUE_METHODS:
            raise ValueError(f"P_VALUE_METHOD must be one of {P_VALUE_METHODS}, got {self.p_value_method!r}")
        self.monitor_interval_seconds = int(os.getenv("MONITOR_INTERVAL_SECONDS", 900))

        # Call setup_logging when the application starts
        log.setup_logging(self.log_level, self.log_file or None)

    def __repr__(self):
        return (
            f"<Settings valkey={self.valkey_host}:{self.valkey_port} loglevel={self.log_level}, "
            f"broker_url:{self.celery_broker_url}, backend_url:{self.celery_backend_url}, "
            f"p_value_method:{self.p_value_method}>"
        )

config = Config()
