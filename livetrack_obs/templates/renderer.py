"""
Template renderer.

Evaluates a nested template specification against a trackpoint and
produces a tree of the same shape whose leaves are rendered strings.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from ..exceptions import TemplateError, TemplateSyntaxError
from .expression import Evaluator, compile_template, lookup
from .helpers import UNDEFINED

logger = logging.getLogger(__name__)


class TemplateRenderer:
    """
    Renders template specifications.

    Nested mappings narrow the data scope to the field of the same name,
    so templates under ``fitnessPointData`` see that sub-record's fields.
    A failing leaf is logged and rendered as an empty string; the rest of
    the tree is unaffected.
    """

    def __init__(self, evaluator: Optional[Evaluator] = None):
        """
        Initialize the renderer.

        Args:
            evaluator: Expression evaluator, defaults to the helper set.
        """
        self.evaluator = evaluator or Evaluator()

    def render(
        self,
        templates: Mapping[str, Any],
        data: Any,
    ) -> Dict[str, Any]:
        """
        Render every template against ``data``.

        Args:
            templates: Nested template specification.
            data: Data scope, usually the latest trackpoint or None.

        Returns:
            Rendered tree mirroring ``templates``.
        """
        return self._render_node(templates, data, ())

    def _render_node(
        self,
        templates: Mapping[str, Any],
        scope: Any,
        path: tuple,
    ) -> Dict[str, Any]:
        rendered: Dict[str, Any] = {}
        for key, value in templates.items():
            if isinstance(value, Mapping):
                rendered[key] = self._render_node(
                    value, lookup(scope, key), path + (key,)
                )
            else:
                rendered[key] = self._render_leaf(str(value), scope, path + (key,))
        return rendered

    def _render_leaf(self, source: str, scope: Any, path: tuple) -> str:
        try:
            return self.evaluator.render(compile_template(source), scope)
        except TemplateError as e:
            logger.warning(
                f"Failed to render template '{'.'.join(path)}': {e.message}"
            )
            return ""

    def validate(self, templates: Mapping[str, Any]) -> List[str]:
        """
        Compile every template leaf.

        Returns:
            Dotted paths of all leaves.

        Raises:
            TemplateSyntaxError: For the first leaf that does not compile,
                with its path in ``details``.
        """
        paths: List[str] = []
        stack = [((), templates)]
        while stack:
            prefix, node = stack.pop()
            for key, value in node.items():
                path = prefix + (key,)
                if isinstance(value, Mapping):
                    stack.append((path, value))
                    continue
                try:
                    compile_template(str(value))
                except TemplateSyntaxError as e:
                    e.details["path"] = ".".join(path)
                    raise
                paths.append(".".join(path))
        return sorted(paths)


def render_templates(templates: Mapping[str, Any], data: Any = UNDEFINED) -> Dict[str, Any]:
    """Render ``templates`` with a default renderer."""
    return TemplateRenderer().render(templates, data)
