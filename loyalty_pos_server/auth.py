"""Operator authentication and session persistence."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from .models import OperatorIdentity, SessionData

logger = logging.getLogger(__name__)


class AuthManager:
    """Manages the operator's session token and identity."""

    def __init__(self, session_file: Optional[str] = None) -> None:
        """
        Initialize the authentication manager.

        Args:
            session_file: Path to store session data. Defaults to ~/.loyalty_pos_session.json
        """
        if session_file is None:
            session_file = str(Path.home() / ".loyalty_pos_session.json")
        self.session_file = session_file
        self.session: SessionData = self._load_session()

        # A token issued out of band takes precedence over the stored session
        self._load_token_from_env()

    def _load_session(self) -> SessionData:
        """Load session data from file if it exists."""
        if os.path.exists(self.session_file):
            try:
                with open(self.session_file, "r") as f:
                    data = json.load(f)
                    return SessionData(**data)
            except (json.JSONDecodeError, ValueError):
                # If file is corrupted, start fresh
                logger.warning(f"Ignoring unreadable session file {self.session_file}")
        return SessionData()

    def _save_session(self) -> None:
        """Save session data to file."""
        with open(self.session_file, "w") as f:
            json.dump(self.session.model_dump(), f, default=str)
        # Set restrictive permissions on session file
        os.chmod(self.session_file, 0o600)

    def save_session(self, token: str, operator: OperatorIdentity) -> None:
        """
        Save authentication session.

        Args:
            token: Bearer token from a successful login
            operator: Identity of the logged-in operator
        """
        self.session = SessionData(
            token=token,
            operator=operator,
            is_authenticated=True,
        )
        self._save_session()
        logger.info(f"Session saved for operator {operator.phone} ({operator.role})")

    def get_session(self) -> SessionData:
        """Get current session data."""
        return self.session

    def clear_session(self) -> None:
        """Clear the current session."""
        self.session = SessionData()
        if os.path.exists(self.session_file):
            os.remove(self.session_file)

    def is_authenticated(self) -> bool:
        """Check if there's an active authenticated session."""
        return self.session.is_authenticated and bool(self.session.token) and self.session.operator is not None

    def get_token(self) -> Optional[str]:
        return self.session.token

    def get_operator(self) -> Optional[OperatorIdentity]:
        return self.session.operator if self.is_authenticated() else None

    def _load_token_from_env(self) -> None:
        """
        Load a pre-issued session from environment variables.

        - LOYALTY_POS_TOKEN: bearer token (required)
        - LOYALTY_POS_PHONE: operator phone (required)
        - LOYALTY_POS_OPERATOR_NAME: operator display name (optional, defaults to "App")
        - LOYALTY_POS_ROLE: operator role (optional, defaults to "Admin")
        """
        token = os.environ.get("LOYALTY_POS_TOKEN")
        phone = os.environ.get("LOYALTY_POS_PHONE")

        if not token or not phone:
            logger.debug("No token found in environment variables")
            return

        operator = OperatorIdentity(
            phone=phone,
            name=os.environ.get("LOYALTY_POS_OPERATOR_NAME", "App"),
            role=os.environ.get("LOYALTY_POS_ROLE", "Admin"),
        )
        logger.info(f"✓ Loaded session token from environment for operator {phone}")
        self.session = SessionData(token=token, operator=operator, is_authenticated=True)
        self._save_session()
