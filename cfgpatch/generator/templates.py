"""
templates.py - Jinja2 template loading and rendering

Handles loading config-sections.yaml and rendering the sections the tool
writes from scratch.
"""

import ast
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from jinja2 import BaseLoader, Environment, TemplateSyntaxError

from ..wizard.settings import format_number

logger = logging.getLogger(__name__)

TEMPLATE_ERROR_PREFIX = "# Template error:"
RENDER_ERROR_PREFIX = "# Render error:"


class TemplateRenderer:
    """Renders Klipper config sections from Jinja2 templates."""

    def __init__(self, templates_file: Path = None):
        self.templates_file = templates_file or self._find_templates_file()
        self.templates: Dict[str, Any] = {}
        self._load_templates()

        self.env = Environment(
            loader=BaseLoader(),
            trim_blocks=True,
            lstrip_blocks=True,
        )

        # Custom filters
        self.env.filters['num'] = format_number

    def _find_templates_file(self) -> Path:
        """Find config-sections.yaml in the package schema directory."""
        module_dir = Path(__file__).parent
        candidates = [
            module_dir.parent / "schema" / "config-sections.yaml",
            module_dir.parent.parent / "schema" / "config-sections.yaml",
        ]

        for path in candidates:
            if path.exists():
                return path

        raise FileNotFoundError(
            "Could not find config-sections.yaml. "
            "Searched: " + ", ".join(str(p) for p in candidates)
        )

    def _load_templates(self) -> None:
        """Load templates from YAML file."""
        with open(self.templates_file, 'r') as f:
            data = yaml.safe_load(f)

        self.templates = data or {}
        logger.debug("Loaded %d template groups from %s", len(self.templates), self.templates_file)

    def evaluate_condition(self, condition: str, context: Dict[str, Any]) -> bool:
        """Evaluate a condition string against context."""
        if not condition:
            return True

        def _get_path(obj: Any, path: list) -> Any:
            cur = obj
            for part in path:
                if isinstance(cur, dict):
                    cur = cur.get(part)
                else:
                    cur = getattr(cur, part, None)
            return cur

        def _eval(node: ast.AST) -> Any:
            if isinstance(node, ast.Constant):
                return node.value

            # Names (top-level context keys)
            if isinstance(node, ast.Name):
                return context.get(node.id)

            # Attribute chain, e.g. mcu.connection_type
            if isinstance(node, ast.Attribute):
                parts: list = []
                cur: ast.AST = node
                while isinstance(cur, ast.Attribute):
                    parts.append(cur.attr)
                    cur = cur.value
                parts.reverse()
                return _get_path(_eval(cur), parts)

            if isinstance(node, ast.BoolOp):
                if isinstance(node.op, ast.And):
                    return all(bool(_eval(v)) for v in node.values)
                if isinstance(node.op, ast.Or):
                    return any(bool(_eval(v)) for v in node.values)
                raise ValueError("Unsupported boolean operator")

            if isinstance(node, ast.UnaryOp):
                if isinstance(node.op, ast.Not):
                    return not bool(_eval(node.operand))
                raise ValueError("Unsupported unary operator")

            if isinstance(node, ast.Compare):
                left = _eval(node.left)
                for op, comp in zip(node.ops, node.comparators):
                    right = _eval(comp)
                    if isinstance(op, ast.In):
                        ok = left in right if right is not None else False
                    elif isinstance(op, ast.NotIn):
                        ok = left not in right if right is not None else True
                    elif isinstance(op, ast.Eq):
                        ok = left == right
                    elif isinstance(op, ast.NotEq):
                        ok = left != right
                    elif isinstance(op, ast.Lt):
                        ok = left < right
                    elif isinstance(op, ast.LtE):
                        ok = left <= right
                    elif isinstance(op, ast.Gt):
                        ok = left > right
                    elif isinstance(op, ast.GtE):
                        ok = left >= right
                    else:
                        raise ValueError("Unsupported comparison operator")
                    if not ok:
                        return False
                    left = right
                return True

            if isinstance(node, (ast.List, ast.Tuple)):
                return [_eval(e) for e in node.elts]

            raise ValueError(f"Unsupported expression: {node.__class__.__name__}")

        try:
            tree = ast.parse(condition, mode="eval")
            return bool(_eval(tree.body))
        except Exception as e:
            # An unevaluable condition means the section is not rendered
            logger.debug("Condition %r not evaluable: %s", condition, e)
            return False

    def render_template(self, template_str: str, context: Dict[str, Any]) -> str:
        """Render a single template string with context."""
        try:
            template = self.env.from_string(template_str)
            result = template.render(**context)
            if not result.endswith('\n'):
                result += '\n'
            return result
        except TemplateSyntaxError as e:
            logger.error("Template syntax error: %s", e)
            return f"{TEMPLATE_ERROR_PREFIX} {e}\n"
        except Exception as e:
            logger.error("Template render error: %s", e)
            return f"{RENDER_ERROR_PREFIX} {e}\n"

    def get_entry(self, *path: str) -> Optional[Dict[str, Any]]:
        """Template entry at a dotted path, e.g. ('secondary_mcu', 'fans', 'part_fan')."""
        entry: Any = self.templates
        for part in path:
            if not isinstance(entry, dict):
                return None
            entry = entry.get(part)
        return entry if isinstance(entry, dict) else None

    def render_section(self, *path: str, context: Dict[str, Any]) -> Optional[str]:
        """
        Render one template entry.

        Returns:
            Rendered config text, or None if the entry is unknown or its
            condition is not met
        """
        entry = self.get_entry(*path)
        if not entry:
            return None

        condition = entry.get('condition')
        if condition and not self.evaluate_condition(condition, context):
            return None

        template_str = entry.get('template')
        if not template_str:
            return None

        return self.render_template(template_str, context)


def has_render_errors(text: str) -> bool:
    return any(
        line.startswith((TEMPLATE_ERROR_PREFIX, RENDER_ERROR_PREFIX))
        for line in text.split("\n")
    )
