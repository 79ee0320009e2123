"""chatgate: streaming chat gateway in front of OpenAI and Google LLM APIs."""

__version__ = "0.1.0"

__all__ = ["__version__"]
