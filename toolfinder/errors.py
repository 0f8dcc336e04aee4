"""Typed errors raised by the recommendation pipeline."""


class ToolfinderError(Exception):
    """Base class for all toolfinder errors."""


class InputValidationError(ToolfinderError):
    """User input was malformed, too short or too long."""


class EmbeddingServiceError(ToolfinderError):
    """The embedding provider failed, timed out or returned malformed data."""


class CatalogUnavailableError(ToolfinderError):
    """The tool catalog could not be loaded or queried."""


class LLMServiceError(ToolfinderError):
    """The text-generation provider failed or timed out."""


class PromptTemplateError(ToolfinderError):
    """A prompt template could not be found or read."""
