"""Budgeted context injection."""

from .injector import ContextInjector, FORMAT_LADDERS
from .formatter import render_markdown, condensed_text, reference_line

__all__ = ["ContextInjector", "FORMAT_LADDERS", "render_markdown", "condensed_text", "reference_line"]
