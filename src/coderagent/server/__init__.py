"""HTTP front door for the coder agent."""
from .app import CreateAppResult, create_app, logging_callbacks, main, update_agent_card_url

__all__ = ["CreateAppResult", "create_app", "logging_callbacks", "main", "update_agent_card_url"]
