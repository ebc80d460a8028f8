"""
Output template rendering.

Templates are strings with ``${...}`` expressions evaluated in a sandbox
against the latest trackpoint.
"""
from .expression import CompiledTemplate, Evaluator, compile_template, render_template
from .helpers import UNDEFINED, decimal_to_time_string, pad_num
from .renderer import TemplateRenderer, render_templates

__all__ = [
    "CompiledTemplate",
    "Evaluator",
    "compile_template",
    "render_template",
    "UNDEFINED",
    "decimal_to_time_string",
    "pad_num",
    "TemplateRenderer",
    "render_templates",
]
