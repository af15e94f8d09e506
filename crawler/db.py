"""Engine construction for the crawl store: PostgreSQL in deployment, SQLite for local runs."""
import logging
import os

from sqlalchemy import create_engine, text as sql_text
from sqlalchemy.engine import URL, Engine, make_url

logger = logging.getLogger("cafe-crawler")

DB_URL_ALIASES = (
    "DATABASE_URL",
    "DATABASE_PRIVATE_URL",
    "POSTGRES_URL",
    "POSTGRESQL_URL",
)

_TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def crawl_schema() -> str:
    return os.getenv("CRAWL_SCHEMA", "crawl").strip() or "crawl"


def database_url() -> URL:
    for key in DB_URL_ALIASES:
        value = os.getenv(key)
        if value:
            if key != DB_URL_ALIASES[0]:
                logger.info("Using database URL from %s", key)
            return make_url(value)
    raise RuntimeError(f"DATABASE_URL is not set (checked aliases: {', '.join(DB_URL_ALIASES)})")


def _with_sslmode(url: URL) -> URL:
    if url.query.get("sslmode"):
        return url
    sslmode = os.getenv("DB_SSLMODE", "").strip()
    if not sslmode and env_flag("REQUIRE_DB_SSL"):
        sslmode = "require"
    return url.update_query_dict({"sslmode": sslmode}) if sslmode else url


def get_engine() -> Engine:
    url = database_url()
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+psycopg")

    backend = url.get_backend_name()
    if backend == "sqlite":
        # One engine serves the crawl loop thread and the API worker threads.
        return create_engine(url, future=True, connect_args={"check_same_thread": False})
    if backend != "postgresql":
        return create_engine(url, future=True)

    engine = create_engine(_with_sslmode(url), pool_pre_ping=True, future=True)
    # Unqualified tables land in the crawl schema on PostgreSQL.
    return engine.execution_options(schema_translate_map={None: crawl_schema()})


def check_db_connectivity(engine: Engine) -> None:
    with engine.begin() as conn:
        conn.execute(sql_text("SELECT 1"))
