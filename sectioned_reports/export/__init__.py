"""
Export module for the Sectioned Report Builder.

Compiles completed sections into a printable HTML document; PDF
rendering lives in ``export.pdf``.
"""

from .compiler import (
    CompiledDocument,
    DocumentCompiler,
    NothingToCompileError,
    compile_document,
    order_sections,
)

__all__ = [
    "CompiledDocument",
    "DocumentCompiler",
    "NothingToCompileError",
    "compile_document",
    "order_sections",
]
