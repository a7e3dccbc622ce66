"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("contacthub.config")


class Settings(BaseSettings):
    # Asterisk Manager Interface
    ami_host: str = "127.0.0.1"
    ami_port: int = 5038
    ami_username: str = ""
    ami_secret: str = ""
    ami_connect_timeout: float = 10.0
    ami_action_timeout: float = 30.0
    ami_reconnect_initial_delay: float = 1.0
    ami_reconnect_max_delay: float = 30.0
    ami_keepalive_interval: float = 20.0  # 0 disables the Ping loop

    # Call origination
    originate_context: str = "from-internal"
    originate_channel_technology: str = "PJSIP"
    originate_timeout_ms: int = 30000
    originate_caller_id_template: str = "poste {extension}"

    # Extensions bridged when a chat visitor accepts an offer call
    offer_from_extension: str = "1001"
    offer_to_extension: str = "1002"

    # Dialogue
    dialogue_rules_path: str = ""
    dialogue_session_idle_seconds: float = 1800.0

    # Record storage ("" keeps everything in memory)
    data_dir: str = "data"

    # Realtime hub
    hub_queue_size: int = 100

    # Operator auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []

        if "{extension}" not in self.originate_caller_id_template:
            raise ValueError(
                "ORIGINATE_CALLER_ID_TEMPLATE must contain the {extension} placeholder."
            )
        if self.originate_timeout_ms <= 0 or self.ami_action_timeout <= 0:
            raise ValueError("Origination and action timeouts must be positive.")
        if self.ami_reconnect_initial_delay <= 0:
            raise ValueError("AMI_RECONNECT_INITIAL_DELAY must be positive.")

        # AMI credentials: the hub still serves chat and CRUD without them
        if not self.ami_username or not self.ami_secret:
            warnings.append(
                "AMI_USERNAME / AMI_SECRET not set. Call origination and "
                "inbound call notifications will be unavailable."
            )

        if self.ami_reconnect_max_delay < self.ami_reconnect_initial_delay:
            warnings.append(
                "AMI_RECONNECT_MAX_DELAY is below the initial delay; "
                "reconnects will not back off."
            )

        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Operator APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Operator APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable /call."
                )

        if not self.data_dir:
            warnings.append("DATA_DIR is empty. Records are kept in memory only.")

        return warnings


settings = Settings()
