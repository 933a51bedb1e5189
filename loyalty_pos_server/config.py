"""Runtime settings read from the environment."""

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field

from .models import AuthCredentials
from .money import DEFAULT_COUNTRY_CODE

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Server settings."""

    api_url: str = Field(default="http://localhost:5137/api", description="Loyalty backend root URL")
    timeout: float = Field(default=15.0, gt=0, description="Backend request timeout in seconds")
    country_code: str = Field(default=DEFAULT_COUNTRY_CODE, description="Prefix for WhatsApp numbers")
    session_file: Optional[str] = Field(None, description="Operator session file")
    log_level: str = Field(default="INFO", description="Root logging level")
    phone: Optional[str] = Field(None, description="Operator phone for auto-login")
    password: Optional[str] = Field(None, description="Operator password for auto-login")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from LOYALTY_POS_* environment variables."""
        values: dict[str, str] = {}
        env_map = {
            "api_url": "LOYALTY_POS_API_URL",
            "timeout": "LOYALTY_POS_TIMEOUT",
            "country_code": "LOYALTY_POS_COUNTRY_CODE",
            "session_file": "LOYALTY_POS_SESSION_FILE",
            "log_level": "LOYALTY_POS_LOG_LEVEL",
            "phone": "LOYALTY_POS_PHONE",
            "password": "LOYALTY_POS_PASSWORD",
        }
        for field, env_name in env_map.items():
            value = os.environ.get(env_name)
            if value:
                values[field] = value
        return cls(**values)

    @property
    def credentials(self) -> Optional[AuthCredentials]:
        """Auto-login credentials, when an operator phone is configured."""
        if not self.phone:
            return None
        return AuthCredentials(phone=self.phone, password=self.password)

    @property
    def logging_level(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO
