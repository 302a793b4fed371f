"""
Configuration Management Module
Loads configuration from an optional config.yaml, then applies environment overrides
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

PRODUCTION = "production"


@dataclass
class DatabaseConfig:
    """Database configuration"""
    url: str = ""
    host: str = "localhost"
    port: int = 5432
    user: str = "admin"
    password: str = ""
    name: str = "sistema_policial"
    ssl: bool = False
    pool_size: int = 10
    max_overflow: int = 0
    pool_timeout: int = 10
    pool_recycle: int = 30
    echo: bool = False


@dataclass
class ServerConfig:
    """HTTP server configuration"""
    host: str = "0.0.0.0"
    port: int = 8080
    environment: str = "development"
    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8080",
        "https://sistema-policial.onrender.com",
    ])
    public_dir: str = "public"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == PRODUCTION


@dataclass
class StorageConfig:
    """Attachment storage configuration"""
    upload_dir: str = "uploads"
    temp_dir: str = "upload_staging"
    max_upload_size_mb: int = 10
    allowed_content_types: List[str] = field(default_factory=lambda: [
        "application/pdf",
        "application/x-pdf",
        "application/octet-stream",
    ])

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = ""
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    slow_query_threshold_ms: float = 500.0


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "require")


class ConfigManager:
    """Manages service configuration"""

    def __init__(self, config_path: Optional[str] = None, use_env: bool = True):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
            use_env: Apply environment variable overrides after the file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.server: ServerConfig = ServerConfig()
        self.storage: StorageConfig = StorageConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.debug("Config file not found at %s, using defaults", self.config_path)

        if use_env:
            self.apply_env()
        self._validate()

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        search_paths = [
            Path.cwd() / "config.yaml",
            Path(__file__).parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                return path
        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_database()
        self._parse_server()
        self._parse_storage()
        self._parse_logging()

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {})
        self.database = DatabaseConfig(
            url=cfg.get('url', self.database.url),
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name),
            ssl=cfg.get('ssl', self.database.ssl),
            pool_size=cfg.get('pool_size', self.database.pool_size),
            max_overflow=cfg.get('max_overflow', self.database.max_overflow),
            pool_timeout=cfg.get('pool_timeout', self.database.pool_timeout),
            pool_recycle=cfg.get('pool_recycle', self.database.pool_recycle),
            echo=cfg.get('echo', self.database.echo),
        )

    def _parse_server(self) -> None:
        """Parse server configuration"""
        cfg = self._raw_config.get('server', {})
        self.server = ServerConfig(
            host=cfg.get('host', self.server.host),
            port=cfg.get('port', self.server.port),
            environment=cfg.get('environment', self.server.environment),
            cors_origins=cfg.get('cors_origins', self.server.cors_origins),
            public_dir=cfg.get('public_dir', self.server.public_dir),
        )

    def _parse_storage(self) -> None:
        """Parse attachment storage configuration"""
        cfg = self._raw_config.get('storage', {})
        self.storage = StorageConfig(
            upload_dir=cfg.get('upload_dir', self.storage.upload_dir),
            temp_dir=cfg.get('temp_dir', self.storage.temp_dir),
            max_upload_size_mb=cfg.get('max_upload_size_mb', self.storage.max_upload_size_mb),
            allowed_content_types=cfg.get('allowed_content_types',
                                          self.storage.allowed_content_types),
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=cfg.get('level', self.logging.level),
            file=cfg.get('file', self.logging.file),
            console=cfg.get('console', self.logging.console),
            format=cfg.get('format', self.logging.format),
            slow_query_threshold_ms=cfg.get('slow_query_threshold_ms',
                                            self.logging.slow_query_threshold_ms),
        )

    def apply_env(self) -> None:
        """Override file/default values with environment variables"""
        db = self.database
        db.url = os.getenv("DATABASE_URL", db.url)
        db.host = os.getenv("DB_HOST", db.host)
        db.port = _env_int("DB_PORT", db.port)
        db.name = os.getenv("DB_NAME", db.name)
        db.user = os.getenv("DB_USER", db.user)
        db.password = os.getenv("DB_PASSWORD", db.password)
        db.ssl = _env_bool("DB_SSL", db.ssl)
        db.pool_size = _env_int("DB_POOL_SIZE", db.pool_size)
        db.max_overflow = _env_int("DB_MAX_OVERFLOW", db.max_overflow)
        db.pool_timeout = _env_int("DB_POOL_TIMEOUT", db.pool_timeout)
        db.pool_recycle = _env_int("DB_POOL_RECYCLE", db.pool_recycle)
        db.echo = _env_bool("DB_ECHO", db.echo)

        server = self.server
        server.host = os.getenv("API_HOST", server.host)
        server.port = _env_int("PORT", server.port)
        server.environment = os.getenv(
            "ENVIRONMENT", os.getenv("NODE_ENV", server.environment)
        )
        cors_origins = os.getenv("CORS_ORIGINS", "")
        if cors_origins:
            server.cors_origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
        server.public_dir = os.getenv("PUBLIC_DIR", server.public_dir)

        storage = self.storage
        storage.upload_dir = os.getenv("UPLOAD_DIR", storage.upload_dir)
        storage.temp_dir = os.getenv("UPLOAD_TMP_DIR", storage.temp_dir)
        storage.max_upload_size_mb = _env_int("MAX_UPLOAD_SIZE_MB", storage.max_upload_size_mb)

        log_cfg = self.logging
        log_cfg.level = os.getenv("LOG_LEVEL", log_cfg.level)
        log_cfg.file = os.getenv("LOG_FILE", log_cfg.file)

    def database_url(self) -> str:
        """Build the async driver URL for the store."""
        url = self.database.url
        if url:
            if url.startswith("postgres://"):
                return "postgresql+asyncpg://" + url[len("postgres://"):]
            if url.startswith("postgresql://"):
                return "postgresql+asyncpg://" + url[len("postgresql://"):]
            return url

        db = self.database
        return f"postgresql+asyncpg://{db.user}:{db.password}@{db.host}:{db.port}/{db.name}"

    def _validate(self) -> None:
        """Validate configuration values"""
        if not 1 <= self.server.port <= 65535:
            raise ConfigurationError(f"Invalid port: {self.server.port}")
        if self.database.pool_size < 1:
            raise ConfigurationError("Database pool_size must be at least 1")
        if self.database.max_overflow < 0:
            raise ConfigurationError("Database max_overflow cannot be negative")
        if self.database.pool_timeout <= 0:
            raise ConfigurationError("Database pool_timeout must be positive")
        if self.storage.max_upload_size_mb <= 0:
            raise ConfigurationError("max_upload_size_mb must be positive")
        upload_dir = Path(self.storage.upload_dir).resolve()
        temp_dir = Path(self.storage.temp_dir).resolve()
        if temp_dir == upload_dir or upload_dir in temp_dir.parents:
            # upload_dir is served statically; staged parts must not be reachable
            raise ConfigurationError(
                f"temp_dir {self.storage.temp_dir!r} must be outside upload_dir {self.storage.upload_dir!r}"
            )
        if logging.getLevelName(self.logging.level.upper()) == f"Level {self.logging.level.upper()}":
            raise ConfigurationError(f"Unknown log level: {self.logging.level}")


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to build a configuration instance"""
    return ConfigManager(config_path)
