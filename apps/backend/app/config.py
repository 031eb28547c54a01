import os
from pathlib import Path

DEFAULT_ARACHNE_API_URL = "http://localhost:8080"
DEFAULT_AI_BACKEND_URL = "http://localhost:3001"
DEFAULT_RELAY_URL = "http://localhost:8000"
DEFAULT_SUMMARY_TIMEOUT_SECONDS = 60.0
DEFAULT_POLL_INTERVAL_SECONDS = 3.0


def _get_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def get_arachne_api_url() -> str:
    return os.getenv("ARACHNE_API_URL", DEFAULT_ARACHNE_API_URL).rstrip("/")


def get_ai_backend_url() -> str:
    return os.getenv("AI_BACKEND_URL", DEFAULT_AI_BACKEND_URL).rstrip("/")


def get_relay_url() -> str:
    return os.getenv("ARACHNE_RELAY_URL", DEFAULT_RELAY_URL).rstrip("/")


def get_summary_timeout() -> float:
    """Upper bound for one generation request, streaming or not."""
    return _get_float_env("SUMMARY_TIMEOUT_SECONDS", DEFAULT_SUMMARY_TIMEOUT_SECONDS)


def get_poll_interval() -> float:
    return _get_float_env("ARACHNE_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS)


def get_state_file() -> Path:
    raw = os.getenv("ARACHNE_STATE_FILE")
    if raw:
        return Path(raw)
    return Path.home() / ".arachne" / "state.json"


def is_dev() -> bool:
    return os.getenv("ARACHNE_ENV", "production").lower() == "dev"


class Capabilities:
    @staticmethod
    def is_arachne_configured() -> bool:
        return bool(os.getenv("ARACHNE_API_URL"))

    @staticmethod
    def is_ai_configured() -> bool:
        return bool(os.getenv("AI_BACKEND_URL"))

    @classmethod
    def get_status(cls) -> dict:
        # Defaults point at localhost, so unset URLs only degrade to amber
        arachne = cls.is_arachne_configured()
        ai = cls.is_ai_configured()

        return {
            "status": "green" if arachne and ai else "amber",
            "components": {
                "arachne": arachne,
                "ai": ai,
            },
            "upstreams": {
                "arachne": get_arachne_api_url(),
                "ai": get_ai_backend_url(),
            },
        }


def get_env_presence() -> dict:
    required_vars = [
        "ARACHNE_ENV",
        "ARACHNE_API_URL",
        "AI_BACKEND_URL",
        "SUMMARY_TIMEOUT_SECONDS",
        "RATE_LIMIT_SUMMARIZE",
        "ARACHNE_RELAY_URL",
        "ARACHNE_POLL_INTERVAL",
        "ARACHNE_STATE_FILE",
        "ARACHNE_CORS_ORIGINS",
    ]

    return {var: bool(os.getenv(var)) for var in required_vars}
