"""
Startup Configuration for the DBPowerAI analysis service
Loads config.json and environment overrides for models, storage and integrations
"""

import json
import os
from typing import Dict, Any, Optional
from pathlib import Path
import logging

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///data/dbpowerai.db"

DEFAULT_CONFIG: Dict[str, Any] = {
    "api": {"host": "127.0.0.1", "port": 8000, "title": "DBPowerAI SQL Analysis Service"},
    "database": {"default_url": DEFAULT_DATABASE_URL},
    "llm_settings": {
        "analyzer_model": "gpt-4o-mini",
        "validator_model": "gpt-4o-mini",
        "analyzer_temperature": 0.3,
        "validator_temperature": 0.1,
        "request_timeout_seconds": 30,
    },
    "notifications": {"slack_timeout_seconds": 5},
    "logging": {"level": "INFO", "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
}


class StartupConfig:
    """
    Configuration manager for the analysis service
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the startup configuration

        Args:
            config_path: Path to the config.json file; built-in defaults are used when none is found
        """
        self.config_path = config_path or self._find_config_file()
        self.config = self._load_config()
        self._validate_config()

    def _find_config_file(self) -> Optional[str]:
        """Find the config.json file in the project"""
        current_dir = Path.cwd()

        config_locations = [
            current_dir / "config.json",
            current_dir.parent / "config.json",
            Path(__file__).parent.parent.parent / "config.json"
        ]

        for config_path in config_locations:
            if config_path.exists():
                return str(config_path)

        return None

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from JSON file"""
        if self.config_path is None:
            logger.warning("config.json not found in any expected location, using built-in defaults")
            return json.loads(json.dumps(DEFAULT_CONFIG))

        try:
            with open(self.config_path, 'r') as f:
                config = json.load(f)
            logger.info(f"Configuration loaded from: {self.config_path}")
            return config
        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise

    def _validate_config(self):
        """Warn about missing sections; every property has a default"""
        for section in ("database", "llm_settings", "logging"):
            if section not in self.config:
                logger.warning(f"Missing configuration section: {section}")

    def _section(self, name: str) -> Dict[str, Any]:
        return self.config.get(name, {})

    def _llm_setting(self, key: str) -> Any:
        return self._section("llm_settings").get(key, DEFAULT_CONFIG["llm_settings"][key])

    # API Configuration
    @property
    def api_host(self) -> str:
        return self._section("api").get("host", DEFAULT_CONFIG["api"]["host"])

    @property
    def api_port(self) -> int:
        return int(self._section("api").get("port", DEFAULT_CONFIG["api"]["port"]))

    @property
    def api_title(self) -> str:
        return self._section("api").get("title", DEFAULT_CONFIG["api"]["title"])

    # Database Configuration
    @property
    def database_url(self) -> str:
        """Get database connection URL for the result store"""
        env_url = os.getenv("DATABASE_URL")
        if env_url:
            return env_url
        return self._section("database").get("default_url", DEFAULT_DATABASE_URL)

    # LLM Configuration
    @property
    def openai_api_key(self) -> Optional[str]:
        """Credential for both analyzer and validator; None means heuristic mode"""
        return os.getenv("OPENAI_API_KEY") or None

    @property
    def analyzer_model(self) -> str:
        return self._llm_setting("analyzer_model")

    @property
    def validator_model(self) -> str:
        return self._llm_setting("validator_model")

    @property
    def analyzer_temperature(self) -> float:
        return float(self._llm_setting("analyzer_temperature"))

    @property
    def validator_temperature(self) -> float:
        return float(self._llm_setting("validator_temperature"))

    @property
    def request_timeout_seconds(self) -> float:
        """Timeout applied to every LLM request"""
        return float(self._llm_setting("request_timeout_seconds"))

    # Integrations
    @property
    def slack_webhook_url(self) -> Optional[str]:
        return os.getenv("SLACK_WEBHOOK_URL") or None

    @property
    def slack_timeout_seconds(self) -> float:
        return float(self._section("notifications").get("slack_timeout_seconds", 5))

    @property
    def webhook_api_key(self) -> Optional[str]:
        """Bearer key expected by the webhook endpoint"""
        return os.getenv("SLOWQUERY_API_KEY") or None

    # Logging Configuration
    @property
    def logging_level(self) -> str:
        return self._section("logging").get("level", DEFAULT_CONFIG["logging"]["level"])

    @property
    def logging_format(self) -> str:
        return self._section("logging").get("format", DEFAULT_CONFIG["logging"]["format"])

    def get_startup_summary(self) -> str:
        """Get a summary of startup configuration"""
        summary = []
        summary.append("=== DBPowerAI Configuration ===")
        summary.append(f"Result store: {self.database_url}")
        summary.append(f"Analyzer model: {self.analyzer_model} (temperature {self.analyzer_temperature})")
        summary.append(f"Validator model: {self.validator_model} (temperature {self.validator_temperature})")
        summary.append(f"LLM timeout: {self.request_timeout_seconds}s")
        summary.append("")
        summary.append("=== Integrations ===")
        summary.append(f"OpenAI: {'✓' if self.openai_api_key else '✗ (heuristic analysis only)'}")
        summary.append(f"Slack notifications: {'✓' if self.slack_webhook_url else '✗'}")
        summary.append(f"Webhook API key: {'✓' if self.webhook_api_key else '✗'}")
        return "\n".join(summary)


# Global configuration instance
startup_config = None


def get_startup_config(config_path: Optional[str] = None) -> StartupConfig:
    """Get or create the global startup configuration instance"""
    global startup_config

    if startup_config is None:
        startup_config = StartupConfig(config_path)

    return startup_config


def reset_startup_config():
    """Drop the global configuration so the next call reloads it"""
    global startup_config
    startup_config = None


def initialize_system_config(config_path: Optional[str] = None) -> StartupConfig:
    """Initialize the system configuration at startup"""
    config = get_startup_config(config_path)
    logger.info("\n" + config.get_startup_summary())
    return config
