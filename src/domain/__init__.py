"""Domain layer: errors, schemas and constants."""

from .errors import ErrorCodes, PolicyRejectError, TemplateRenderError
from .schemas import (
    OutputFormat,
    RunLog,
    TemplateProblem,
    TokenKind,
    normalize_values,
    parse_output_format,
)

__all__ = [
    "ErrorCodes",
    "PolicyRejectError",
    "TemplateRenderError",
    "OutputFormat",
    "RunLog",
    "TemplateProblem",
    "TokenKind",
    "normalize_values",
    "parse_output_format",
]
