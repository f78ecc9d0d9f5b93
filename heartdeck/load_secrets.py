import os
from dotenv import load_dotenv

load_dotenv()

user = os.getenv("DB_USER")
password = os.getenv("DB_PASSWORD")
host = os.getenv("DB_HOST")
port = os.getenv("DB_PORT", "5432")
db_name = os.getenv("DB_NAME")

if host:
    database_url = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db_name}"
else:
    database_url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./heartdeck.sqlite3")

redis_host = os.getenv("REDIS_HOST", "redis")
redis_port = int(os.getenv("REDIS_PORT", "6379"))

default_deck_size = int(os.getenv("DEFAULT_DECK_SIZE", "60"))
skips_per_participant = int(os.getenv("SKIPS_PER_PARTICIPANT", "3"))
max_failed_tasks = int(os.getenv("MAX_FAILED_TASKS", "3"))
poll_interval_seconds = float(os.getenv("POLL_INTERVAL_SECONDS", "3.0"))
channel_retry_seconds = float(os.getenv("CHANNEL_RETRY_SECONDS", "5.0"))
abandoned_session_hours = int(os.getenv("ABANDONED_SESSION_HOURS", "24"))

if __name__ == "__main__":
    print(database_url, redis_host, redis_port)
