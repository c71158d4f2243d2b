# wolmgr/core/config.py
"""
Configuration of the Wake-on-LAN task manager.

Values come from the environment, optionally seeded from a ``.env`` file at
the project root (or the file named by CONFIG_ENV_PATH). The module exposes
one shared ``config`` object; ``reload_config_env()`` refreshes it in place
so modules holding a reference see the new values after SIGHUP.
"""

import os
from typing import Dict, List, Optional, Tuple

_CONFIG_ENV_LOADED: bool = False
_CONFIG_INSTANCE: Optional["Config"] = None

# Variables owned by this module. A reload drops them from os.environ first so
# that a line removed from .env falls back to its default.
_CONFIG_ENV_PREFIXES = ("AUTHORIZED_TOKENS__", "USER_TOKENS__")
_CONFIG_ENV_KEYS = frozenset(
    {
        "SERVER_PROTOCOL",
        "SERVER_HOST",
        "SERVER_PORT",
        "ENVIRONMENT",
        "UVICORN_WORKERS",
        "LOG_DIRECTORY",
        "LOG_LEVEL",
        "API_DOCS_VISIBILITY",
        "STORE_BACKEND",
        "STORE_PATH",
        "STORE_LOCK_TIMEOUT",
        "CLAIM_LIMIT",
        "CLAIM_LIMIT_MAX",
        "CLAIM_MAX_ATTEMPTS",
        "PROCESSING_TIMEOUT_SECONDS",
        "PROCESSING_TIMEOUT_POLL_SECONDS",
        "REQUIRE_USER_AUTH",
        "AGENT_AUTH_REQUIRED",
        "RATE_LIMIT_DEFAULT",
        "CORS_ALLOW_ORIGINS",
        "CORS_ALLOW_CREDENTIALS",
        "CORS_ALLOW_METHODS",
        "CORS_ALLOW_HEADERS",
        "OPENAPI_ALLOW_QUERY_TOKEN",
    }
)

_STORE_BACKENDS = ("sqlite", "json")
_DEFAULT_STORE_PATHS = {
    "sqlite": "data/wol_tasks.sqlite3",
    "json": "data/wol_tasks.json",
}

_TRUE_VALUES = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_VALUES = frozenset({"0", "false", "f", "no", "n", "off"})


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """``true/yes/on/1`` and ``false/no/off/0`` (any case); anything else is ``default``."""
    if value is None:
        return default
    token = value.strip().lower()
    if token in _TRUE_VALUES:
        return True
    if token in _FALSE_VALUES:
        return False
    return default


def _parse_int(
    value: Optional[str],
    default: int,
    *,
    min_value: Optional[int] = None,
    max_value: Optional[int] = None,
) -> int:
    """Integer clamped to ``[min_value, max_value]``; unparsable input gives ``default``."""
    try:
        number = int(value.strip()) if value is not None else default
    except ValueError:
        return default
    if min_value is not None and number < min_value:
        number = min_value
    if max_value is not None and number > max_value:
        number = max_value
    return number


def _parse_list(value: Optional[str], default: str = "*") -> List[str]:
    """Comma-separated values, ``[default]`` when nothing is left after trimming."""
    items = [item.strip() for item in (value if value is not None else default).split(",")]
    return [item for item in items if item] or [default]


def _load_prefixed_tokens(prefix: str) -> Dict[str, str]:
    """
    Collect ``<prefix><NAME>=<token>`` variables into ``{NAME: token}``.

    Blank tokens and variables with an empty name are skipped.
    """
    tokens: Dict[str, str] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        name, token = key[len(prefix) :], value.strip()
        if name and token:
            tokens[name] = token
    return tokens


def _env_file_path() -> Tuple[str, str]:
    """Return the .env path to load and where it came from (override or default)."""
    override = os.getenv("CONFIG_ENV_PATH") or os.getenv("ENV_FILE")
    if override:
        return override, "override path"
    project_dir = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    return os.path.join(project_dir, ".env"), "default path"


def _load_environment_variables() -> None:
    """Seed os.environ from the .env file, when there is one."""
    env_path, origin = _env_file_path()
    print(f"Loading environment variables from {origin}: {env_path}")

    if not os.path.exists(env_path):
        print(f"Warning: no .env file found in: {env_path}, default configuration used")
        return

    from dotenv import load_dotenv

    # override=True so that a reload picks up edited values
    load_dotenv(env_path, override=True)
    print(f"Loaded environment variables from: {env_path}")


def _clear_config_env_vars() -> None:
    """Drop every variable owned by this module from os.environ."""
    owned = [
        key
        for key in os.environ
        if key in _CONFIG_ENV_KEYS or key.startswith(_CONFIG_ENV_PREFIXES)
    ]
    for key in owned:
        del os.environ[key]


def get_config() -> "Config":
    """
    Shared configuration instance, built on first use.

    The .env file is read at most once per process (reloads excepted).
    """
    global _CONFIG_ENV_LOADED, _CONFIG_INSTANCE

    if _CONFIG_INSTANCE is None:
        if not _CONFIG_ENV_LOADED:
            _load_environment_variables()
            _CONFIG_ENV_LOADED = True
        _CONFIG_INSTANCE = Config()
    return _CONFIG_INSTANCE


def reload_config_env() -> "Config":
    """
    Re-read .env and refresh the shared ``config`` object in place.

    Returns:
        Config: The same object as before, holding the new values
    """
    global _CONFIG_ENV_LOADED, _CONFIG_INSTANCE

    _clear_config_env_vars()
    _load_environment_variables()
    _CONFIG_ENV_LOADED = True

    fresh = Config()
    current = globals().get("config")
    if current is None:
        _CONFIG_INSTANCE = fresh
        return fresh

    current.__dict__.clear()
    current.__dict__.update(fresh.__dict__)
    _CONFIG_INSTANCE = current
    return current


class Config:
    """
    Settings read from the environment.

    The .env file must already be loaded; see :func:`get_config`.
    """

    def __init__(self):
        print("Initializing configuration from environment variables...")
        env = os.getenv

        # HTTP server
        self.SERVER_PROTOCOL: str = env("SERVER_PROTOCOL", "http")
        self.SERVER_HOST: str = env("SERVER_HOST", "0.0.0.0")
        self.SERVER_PORT: int = _parse_int(env("SERVER_PORT"), 8000, min_value=1)
        self.SERVER_URL = f"{self.SERVER_PROTOCOL}://{self.SERVER_HOST}:{self.SERVER_PORT}"
        # development (uvicorn --reload) or production (gunicorn)
        self.ENVIRONMENT: str = env("ENVIRONMENT", "development")
        self.UVICORN_WORKERS: int = _parse_int(env("UVICORN_WORKERS"), 4, min_value=1)

        # Waking agents: AUTHORIZED_TOKENS__<name>=<token>
        self.AUTHORIZED_TOKENS: Dict[str, str] = _load_prefixed_tokens("AUTHORIZED_TOKENS__")
        # Users: USER_TOKENS__<principal>=<token>, the name is the owning principal
        self.USER_TOKENS: Dict[str, str] = _load_prefixed_tokens("USER_TOKENS__")
        self.REQUIRE_USER_AUTH: bool = _parse_bool(env("REQUIRE_USER_AUTH"), default=False)
        self.AGENT_AUTH_REQUIRED: bool = _parse_bool(env("AGENT_AUTH_REQUIRED"), default=True)

        # Logging, always with a trailing slash
        self.LOG_DIRECTORY: str = env("LOG_DIRECTORY", "/var/log/wolmgr").rstrip("/") + "/"
        self.LOG_LEVEL: str = env("LOG_LEVEL", "INFO").upper()

        # public, or private (docs require an agent token)
        self.API_DOCS_VISIBILITY: str = env("API_DOCS_VISIBILITY", "public").lower()
        # Accept ?token= on the docs routes; off by default, query strings end up in logs
        self.OPENAPI_ALLOW_QUERY_TOKEN: bool = _parse_bool(
            env("OPENAPI_ALLOW_QUERY_TOKEN"), default=False
        )

        # Task store
        self.STORE_BACKEND: str = env("STORE_BACKEND", "sqlite").strip().lower()
        self.STORE_PATH: str = env(
            "STORE_PATH", _DEFAULT_STORE_PATHS.get(self.STORE_BACKEND, "data/wol_tasks")
        )
        # Seconds to wait for the json file lock or a busy sqlite database
        self.STORE_LOCK_TIMEOUT: int = _parse_int(env("STORE_LOCK_TIMEOUT"), 10, min_value=1)

        # Claiming
        self.CLAIM_LIMIT_MAX: int = _parse_int(env("CLAIM_LIMIT_MAX"), 500, min_value=1)
        self.CLAIM_LIMIT: int = _parse_int(
            env("CLAIM_LIMIT"), 50, min_value=1, max_value=self.CLAIM_LIMIT_MAX
        )
        # A failed task is claimable again while attempts < CLAIM_MAX_ATTEMPTS
        self.CLAIM_MAX_ATTEMPTS: int = _parse_int(env("CLAIM_MAX_ATTEMPTS"), 5, min_value=0)

        # Tasks stuck in processing longer than this are failed (0 disables)
        self.PROCESSING_TIMEOUT_SECONDS: int = _parse_int(
            env("PROCESSING_TIMEOUT_SECONDS"), 600, min_value=0
        )
        self.PROCESSING_TIMEOUT_POLL_SECONDS: int = _parse_int(
            env("PROCESSING_TIMEOUT_POLL_SECONDS"), 60, min_value=1
        )

        # slowapi limit applied to every route
        self.RATE_LIMIT_DEFAULT: str = env("RATE_LIMIT_DEFAULT", "120/minute")

        # CORS; a "*" origin cannot be combined with credentials
        self.CORS_ALLOW_ORIGINS = _parse_list(env("CORS_ALLOW_ORIGINS"))
        self.CORS_ALLOW_CREDENTIALS: bool = _parse_bool(
            env("CORS_ALLOW_CREDENTIALS"), default=False
        )
        self.CORS_ALLOW_METHODS = _parse_list(env("CORS_ALLOW_METHODS"))
        self.CORS_ALLOW_HEADERS = _parse_list(env("CORS_ALLOW_HEADERS"))

    def validate_configuration(self) -> None:
        """
        Reject settings the service cannot run with; warn about suspicious ones.

        Raises:
            ValueError: Unknown store backend, empty store path, a token shared
                between agents and users, or credentials with a ``*`` origin
        """
        if self.STORE_BACKEND not in _STORE_BACKENDS:
            raise ValueError(
                f"Invalid STORE_BACKEND={self.STORE_BACKEND!r}: expected one of {list(_STORE_BACKENDS)}"
            )
        if not self.STORE_PATH:
            raise ValueError("STORE_PATH must not be empty")

        if set(self.AUTHORIZED_TOKENS.values()) & set(self.USER_TOKENS.values()):
            raise ValueError("A token cannot be both an AUTHORIZED_TOKENS and a USER_TOKENS value")

        if self.CORS_ALLOW_CREDENTIALS and "*" in self.CORS_ALLOW_ORIGINS:
            raise ValueError(
                "Invalid CORS configuration: CORS_ALLOW_CREDENTIALS=true requires explicit "
                "CORS_ALLOW_ORIGINS"
            )

        if self.AGENT_AUTH_REQUIRED and not self.AUTHORIZED_TOKENS:
            print("WARNING: No AUTHORIZED_TOKENS configured - agent endpoints will be inaccessible")
        if self.REQUIRE_USER_AUTH and not self.USER_TOKENS:
            print("WARNING: REQUIRE_USER_AUTH=true but no USER_TOKENS configured")


config: "Config" = get_config()

# Fail at import rather than on the first request
config.validate_configuration()
