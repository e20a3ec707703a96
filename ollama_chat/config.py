"""Configuration management for the chat client."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv

BASE_URL_ENV = "OLLAMA_CHAT_BASE_URL"
LOG_LEVEL_ENV = "OLLAMA_CHAT_LOG_LEVEL"

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Configuration:
    """Manages configuration and environment variables for the chat client."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for endpoint overrides
        self._config_path = config_path or os.path.join(
            os.path.dirname(__file__), "config.yaml"
        )
        self._config = self._load_yaml_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(self._config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary.

        Returns:
            The complete configuration dictionary.
        """
        return self._config

    def get_client_config(self) -> dict[str, Any]:
        """Get chat client configuration from YAML.

        ``OLLAMA_CHAT_BASE_URL`` overrides ``client.base_url``.

        Returns:
            Client configuration dictionary with validated values.

        Raises:
            ValueError: If required client parameters are missing or invalid.
        """
        client_config = self._config.get("client", {})

        required_keys = [
            "base_url",
            "stream_path",
            "status_path",
            "toggle_path",
            "status_poll_interval",
            "status_poll_attempts",
            "http_client",
        ]
        for key in required_keys:
            if key not in client_config:
                raise ValueError(
                    f"client.{key} must be explicitly configured in config.yaml"
                )

        # Create new dictionary without mutating the original
        result_config = {**client_config}
        env_base_url = os.getenv(BASE_URL_ENV)
        if env_base_url:
            result_config["base_url"] = env_base_url

        for key in ["stream_path", "status_path", "toggle_path"]:
            if not str(result_config[key]).startswith("/"):
                raise ValueError(f"client.{key} must start with '/'")

        poll_interval = result_config["status_poll_interval"]
        if not isinstance(poll_interval, int | float) or poll_interval <= 0:
            raise ValueError("client.status_poll_interval must be positive")

        poll_attempts = result_config["status_poll_attempts"]
        if not isinstance(poll_attempts, int) or poll_attempts < 1:
            raise ValueError("client.status_poll_attempts must be at least 1")

        http_config = client_config["http_client"]
        http_required = [
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout"
        ]
        for key in http_required:
            if key not in http_config:
                raise ValueError(
                    f"client.http_client.{key} must be explicitly configured "
                    "in config.yaml"
                )

        for key in http_required:
            value = http_config[key]
            # read_timeout may be null: no deadline on a stalled stream
            if value is None and key == "read_timeout":
                continue
            if value is None or value <= 0:
                raise ValueError(f"client.http_client.{key} must be positive")

        return result_config

    def get_presentation_config(self) -> dict[str, Any]:
        """Get presentation configuration from YAML.

        Returns:
            Presentation configuration with escalation delay and messages.

        Raises:
            ValueError: If escalation_delay or a message is missing or invalid.
        """
        presentation_config = self._config.get("presentation", {})

        if "escalation_delay" not in presentation_config:
            raise ValueError(
                "presentation.escalation_delay must be explicitly configured "
                "in config.yaml"
            )

        escalation_delay = presentation_config["escalation_delay"]
        if not isinstance(escalation_delay, int | float) or escalation_delay <= 0:
            raise ValueError("presentation.escalation_delay must be positive")

        messages = presentation_config.get("messages", {})
        required_messages = [
            "connect_error",
            "stream_error",
            "response_error",
            "stream_error_marker",
            "empty_response",
        ]
        for key in required_messages:
            if not messages.get(key):
                raise ValueError(
                    f"presentation.messages.{key} must be explicitly configured "
                    "in config.yaml"
                )

        return {
            "escalation_delay": float(escalation_delay),
            "messages": {key: str(messages[key]) for key in required_messages},
        }

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML.

        ``OLLAMA_CHAT_LOG_LEVEL`` overrides ``logging.level``.

        Returns:
            Logging configuration dictionary.
        """
        logging_config = {**self._config.get("logging", {})}
        logging_config["level"] = str(
            os.getenv(LOG_LEVEL_ENV) or logging_config.get("level", "INFO")
        ).upper()
        logging_config.setdefault("log_chunks", False)

        if logging_config["level"] not in VALID_LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {VALID_LOG_LEVELS}")

        return logging_config
