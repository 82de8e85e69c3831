"""
DispatchForge error taxonomy.

Every failure is fatal to the current pipeline run. Errors carry the stage
that raised them plus, when known, the source position and the identifier
involved so the caller can tell which part of the generated text broke the
pipeline's structural assumptions.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    stage = "pipeline"

    def __init__(
        self,
        message: str,
        *,
        line: int | None = None,
        column: int | None = None,
        identifier: str | None = None,
    ):
        self.message = message
        self.line = line
        self.column = column
        self.identifier = identifier
        super().__init__(str(self))

    def __str__(self) -> str:
        where = ""
        if self.line is not None:
            where = f" at line {self.line}"
            if self.column is not None:
                where += f", column {self.column}"
        ident = f" [{self.identifier}]" if self.identifier else ""
        return f"{self.stage}: {self.message}{ident}{where}"


class LexError(PipelineError):
    """Source text could not be tokenized, or its delimiters do not balance."""

    stage = "lexing"


class AdapterError(PipelineError):
    """The external grammar compiler failed; its diagnostics are kept verbatim."""

    stage = "generating"

    def __init__(self, message: str, *, stderr: str = "", returncode: int | None = None):
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr:
            return f"{base}\n{self.stderr.rstrip()}"
        return base


class ExtractionError(PipelineError):
    """Rule-set declaration missing, ambiguous, or of an unexpected shape."""

    stage = "extracting"


class SynthesisError(PipelineError):
    """A rule name cannot become a marker type (reserved word or collision)."""

    stage = "synthesizing"


class RewriteError(PipelineError):
    """A reference site could not be classified as construction or deconstruction."""

    stage = "rewriting"


class InvocationError(PipelineError):
    """Malformed attribute arguments or annotated item."""

    stage = "invocation"


class ConfigError(PipelineError):
    """Invalid or incomplete pipeline configuration."""

    stage = "config"
