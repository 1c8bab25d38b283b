"""
Expansion of ``$VAR`` and ``${VAR}`` references in instruction arguments.
"""
import re
from typing import Dict, Pattern

# Group 1: braced name, 2: modifier (- or +), 3: word, 4: bare name
REFERENCE = r'\$(?:\{([A-Za-z_][A-Za-z0-9_]*)(?::(-|\+)([^}]*))?\}|([A-Za-z_][A-Za-z0-9_]*))'


class EnvironmentInterpolator:
    """
    Interpolates variables in strings.
    Supports $VAR, ${VAR}, ${VAR:-default} and ${VAR:+value}.
    """

    @staticmethod
    def pattern(escape_char: str = "\\") -> Pattern:
        """References preceded by the escape character are literal."""
        return re.compile(r'(?<!' + re.escape(escape_char) + ')' + REFERENCE)

    @staticmethod
    def interpolate(template: str, context: Dict[str, str], strict: bool = True,
                    escape_char: str = "\\") -> str:
        """
        Interpolates variables in the template string using the provided context.

        :param template: The string containing $VAR / ${VAR} placeholders.
        :param context: Variable values in scope.
        :param strict: When False, unresolved references are left as written.
        :param escape_char: Character that makes a following ``$`` literal.
        :return: The interpolated string.
        :raises KeyError: In strict mode, if a variable is not found and no default is provided.
        """

        def replace(match):
            var_name = match.group(1) or match.group(4)
            modifier = match.group(2)
            alt_value = match.group(3)

            value = context.get(var_name)

            if modifier == '-':
                return value if value else alt_value
            if modifier == '+':
                return alt_value if value else ''
            if value is not None:
                return value
            if strict:
                raise KeyError(f"Variable {var_name} not found in context")
            return match.group(0)

        return EnvironmentInterpolator.pattern(escape_char).sub(replace, template)
