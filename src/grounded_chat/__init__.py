"""Document-grounded chat assistant package."""

from .config import AgentConfig, AssistantConfig, GroundingConfig, load_config

__all__ = ["AgentConfig", "AssistantConfig", "GroundingConfig", "load_config"]
