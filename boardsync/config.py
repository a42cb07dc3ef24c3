"""
Configuration loader.

Reads a YAML file shaped like config/boardsync.example.yaml:

    board:        id, user_id, user_name
    persistence:  backend (sqlite|rest|none), db_path, url, api_key_env, timeout
    llm:          url, model, api_key_env, timeout
    bot:          token_env, allowed_users

Secrets are never stored in the file: *_env keys name environment
variables. BOARDSYNC_DB overrides persistence.db_path.
"""
import logging
import os
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

from .gateway import NullGateway, PersistenceGateway, RestGateway, SqliteGateway
from .llm import DEFAULT_MODEL, HttpTextGenerator, TextGenerator
from .schema import DEFAULT_BOARD_ID

logger = logging.getLogger(__name__)

BACKENDS = ("sqlite", "rest", "none")


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


@dataclass
class BoardConfig:
    """Runtime configuration for one board."""

    # Board
    board_id: str = DEFAULT_BOARD_ID
    user_id: str = ""
    user_name: str = ""

    # Persistence
    backend: str = "sqlite"
    db_path: str = "~/.local/share/boardsync/board.db"
    persistence_url: str = ""
    persistence_api_key_env: str = ""
    persistence_timeout: float = 5

    # Text generation
    llm_url: str = ""
    llm_model: str = DEFAULT_MODEL
    llm_api_key_env: str = ""
    llm_timeout: float = 30

    # Telegram bot
    token_env: str = "BOARDSYNC_BOT_TOKEN"
    allowed_users: List[str] = field(default_factory=list)

    @classmethod
    def load(cls, path: str) -> "BoardConfig":
        """Load and validate a YAML config file."""
        cfg_path = Path(path).expanduser()
        if not cfg_path.exists():
            raise ConfigError(f"Config file not found: {cfg_path}")
        try:
            with open(cfg_path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {cfg_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{cfg_path} must contain a mapping")
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict) -> "BoardConfig":
        board = raw.get("board") or {}
        persistence = raw.get("persistence") or {}
        llm = raw.get("llm") or {}
        bot = raw.get("bot") or {}

        cfg = cls(
            board_id=str(board.get("id", DEFAULT_BOARD_ID)),
            user_id=str(board.get("user_id", "")),
            user_name=str(board.get("user_name", "")),
            backend=str(persistence.get("backend", "sqlite")).lower(),
            db_path=str(persistence.get("db_path", cls.db_path)),
            persistence_url=str(persistence.get("url", "")),
            persistence_api_key_env=str(persistence.get("api_key_env", "")),
            persistence_timeout=float(persistence.get("timeout", 5)),
            llm_url=str(llm.get("url", "")),
            llm_model=str(llm.get("model", DEFAULT_MODEL)),
            llm_api_key_env=str(llm.get("api_key_env", "")),
            llm_timeout=float(llm.get("timeout", 30)),
            token_env=str(bot.get("token_env", "BOARDSYNC_BOT_TOKEN")),
            # Numeric Telegram user IDs as strings for comparison
            allowed_users=[str(uid) for uid in bot.get("allowed_users", [])],
        )

        env_db = os.environ.get("BOARDSYNC_DB")
        if env_db:
            cfg.db_path = env_db
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if not self.user_id:
            raise ConfigError("board.user_id is required")
        if self.backend not in BACKENDS:
            raise ConfigError(
                f"Unknown persistence backend '{self.backend}'. "
                f"Available: {', '.join(BACKENDS)}"
            )
        if self.backend == "rest" and not self.persistence_url:
            raise ConfigError("persistence.url is required for the rest backend")

    def secret(self, env_name: str) -> str:
        return os.environ.get(env_name, "") if env_name else ""

    def bot_token(self) -> str:
        """Resolve the Telegram token from the environment."""
        token = self.secret(self.token_env)
        if not token:
            raise ConfigError(
                f"Environment variable {self.token_env} is not set.\n"
                f"Set it:  export {self.token_env}=your_bot_token\n"
                f"Get a token from @BotFather on Telegram."
            )
        return token

    def is_authorized(self, user_id: int) -> bool:
        """Check if a Telegram user ID is in the allowlist."""
        return str(user_id) in self.allowed_users


def build_gateway(cfg: BoardConfig) -> PersistenceGateway:
    """Construct the configured persistence gateway."""
    if cfg.backend == "none":
        return NullGateway()
    if cfg.backend == "rest":
        return RestGateway(
            cfg.persistence_url,
            api_key=cfg.secret(cfg.persistence_api_key_env),
            timeout=cfg.persistence_timeout,
        )
    try:
        return SqliteGateway(str(Path(cfg.db_path).expanduser()))
    except (OSError, sqlite3.Error) as e:
        # Unwritable path: run in demo mode
        logger.warning(f"Cannot open {cfg.db_path} ({e}), persistence disabled")
        return NullGateway()


def build_generator(cfg: BoardConfig) -> Optional[TextGenerator]:
    """Construct the text generator, or None when no llm.url is configured."""
    if not cfg.llm_url:
        return None
    return HttpTextGenerator(
        cfg.llm_url,
        api_key=cfg.secret(cfg.llm_api_key_env),
        default_model=cfg.llm_model,
        timeout=cfg.llm_timeout,
    )
