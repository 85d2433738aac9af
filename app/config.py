import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "plataforma_cotacoes.db")
    # Replica opcional para leituras; sem ela as leituras usam DB_PATH.
    DATABASE_READ_URL = os.environ.get("DATABASE_READ_URL")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-plataforma-cotacoes")
    DEFAULT_TENANT_ID = os.environ.get("DEFAULT_TENANT_ID", "tenant-demo")

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    PO_NUMBER_PREFIX = os.environ.get("PO_NUMBER_PREFIX", "PO")
    PO_NUMBER_PADDING = _int_env("PO_NUMBER_PADDING", 4)
    PO_NUMBER_START = _int_env("PO_NUMBER_START", 1000)
    # Quantidade usada quando o item da cotacao nao informa requested_qty.
    DEFAULT_REQUESTED_QTY = _int_env("DEFAULT_REQUESTED_QTY", 1)
    PO_GENERATION_STALE_SECONDS = _int_env("PO_GENERATION_STALE_SECONDS", 300)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-plataforma-cotacoes":
            raise RuntimeError("SECRET_KEY insegura para producao.")
