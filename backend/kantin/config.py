# backend/kantin/config.py
from __future__ import annotations
import os


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.environ.get(name, default).split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/kantin.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///kantin.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment proof verification
    # auto: use Gemini when GEMINI_API_KEY is set, otherwise the simulator
    VERIFICATION_MODE = os.environ.get("VERIFICATION_MODE", "auto")
    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
    GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-1.5-flash")
    GEMINI_BASE_URL = os.environ.get(
        "GEMINI_BASE_URL",
        "https://generativelanguage.googleapis.com/v1beta",
    )
    # None means the gateway call is not bounded by the app
    VERIFICATION_TIMEOUT_SECONDS = (
        float(os.environ["VERIFICATION_TIMEOUT_SECONDS"])
        if os.environ.get("VERIFICATION_TIMEOUT_SECONDS")
        else None
    )
    SIMULATION_REJECT_RATE = float(os.environ.get("SIMULATION_REJECT_RATE", "0.1"))
    SIMULATION_SEED = (
        int(os.environ["SIMULATION_SEED"]) if os.environ.get("SIMULATION_SEED") else None
    )

    # Kiosk flow
    RESULT_DISPLAY_DELAY_SECONDS = float(os.environ.get("RESULT_DISPLAY_DELAY_SECONDS", "2"))
    KIOSK_SESSION_TTL_SECONDS = int(os.environ.get("KIOSK_SESSION_TTL_SECONDS", "1800"))

    # Accounts
    DEFAULT_SELLER_PASSWORD = os.environ.get("DEFAULT_SELLER_PASSWORD", "123456")

    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
    )


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    VERIFICATION_MODE = "simulated"
    GEMINI_API_KEY = None
    SIMULATION_REJECT_RATE = 0.0
    SIMULATION_SEED = 1234
    RESULT_DISPLAY_DELAY_SECONDS = 0
