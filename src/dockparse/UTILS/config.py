"""
Builds ParseOptions from DOCKPARSE_* environment variables and .env files.
"""
import os
from typing import Any, Mapping, Optional

from dotenv import dotenv_values

from ..MODELS.dockerfile_ast import ParseOptions

ENV_PREFIX = "DOCKPARSE_"

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


def to_bool(name: str, text: str) -> bool:
    """
    Converts a textual switch to a boolean.

    :raises ValueError: If ``text`` is not a recognised boolean.
    """
    lowered = text.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"{name}: expected a boolean, got {text!r}")


def load_parse_options(
    env_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> ParseOptions:
    """
    Loads parser options.

    Values from ``env_file`` are read first; the process environment takes
    precedence over them, and explicit ``overrides`` that are not None take
    precedence over both.

    :param env_file: Optional path to a .env file.
    :param environ: Environment to read instead of ``os.environ``.
    :param overrides: ParseOptions fields set by the caller.
    :return: The merged options.
    """
    values = {}
    if env_file:
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    values.update(os.environ if environ is None else environ)

    settings = {}
    for field_name, field in ParseOptions.model_fields.items():
        key = ENV_PREFIX + field_name.upper()
        raw = values.get(key)
        if raw is None or raw == "":
            continue
        if field.annotation is bool:
            settings[field_name] = to_bool(key, raw)
        else:
            settings[field_name] = raw

    settings.update({k: v for k, v in overrides.items() if v is not None})
    return ParseOptions(**settings)
