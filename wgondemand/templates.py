"""Bundled asset loading and {{Name}} placeholder rendering."""

import re
from importlib import resources
from pathlib import Path

from .errors import TemplateError

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

# Qualifier baked into assets synthesized with the deployment tool's defaults
SYNTH_QUALIFIER = "hnb659fds"


def asset_path(*parts: str) -> Path:
    """:return: Path of a file or directory shipped in wgondemand/assets"""
    return Path(str(resources.files("wgondemand").joinpath("assets", *parts)))


def load_asset(name: str, qualifier: str | None = None) -> str:
    """Read a bundled asset, optionally rewriting the default qualifier.

    :param name: Path relative to the assets directory
    :param qualifier: Replacement for every occurrence of SYNTH_QUALIFIER
    """
    text = asset_path(*name.split("/")).read_text()
    if qualifier:
        text = text.replace(SYNTH_QUALIFIER, qualifier)
    return text


def render(template: str, params: dict[str, str]) -> str:
    """Substitute {{Name}} placeholders from a flat string map.

    Shell syntax such as $var and ${var} is left untouched.

    :raises TemplateError: If the template names a parameter not in params
    """

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name not in params:
            raise TemplateError(f"Template parameter '{name}' not provided")
        return str(params[name])

    return _PLACEHOLDER.sub(_sub, template)
