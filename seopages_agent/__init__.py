"""SEO pages agent - session orchestration for SEO page generation."""

__version__ = "0.1.0"

from seopages_agent.config import Config

__all__ = ["Config", "__version__"]
