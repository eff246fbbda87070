"""Package for turning a learning topic into a researched, narrated story."""

__all__ = ["config", "models", "prompts", "workflow"]
