# Service configuration, read once from the environment (.env supported)
import os
from dotenv import load_dotenv

load_dotenv()

# Storage
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./survey.db")
LOCAL_STORE_PATH = os.getenv("LOCAL_STORE_PATH", "./local_store.json")

# AI completion endpoint
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "1000"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.8"))
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "30"))
CHAT_HISTORY_TURNS = int(os.getenv("CHAT_HISTORY_TURNS", "10"))

# Unfinished questionnaires are dropped after this much inactivity
SURVEY_SESSION_TTL_MINUTES = int(os.getenv("SURVEY_SESSION_TTL_MINUTES", "120"))

# Admin sessions and accounts
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "12"))
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "change-me")
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MAX_SECONDARY_USERS = int(os.getenv("MAX_SECONDARY_USERS", "5"))
MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))

# HTTP
ORIGINS = os.getenv("ORIGINS", "http://localhost:5173").split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
