"""Placeholder substitution for manifest templates."""

import logging
from collections.abc import Mapping
from pathlib import Path

import yaml

from eksdeploy.errors import InvalidManifestError, MissingPlaceholderValueError
from eksdeploy.models import TemplateSpec

logger = logging.getLogger(__name__)

DEFAULT_PLACEHOLDERS = {"fs-xxxxxxxxx": "EFS_ID"}
TEMPLATE_SUFFIX = ".template"


def render(
    template: str,
    context: Mapping[str, str],
    placeholders: Mapping[str, str] = DEFAULT_PLACEHOLDERS,
    source: str | None = None,
) -> str:
    """Replace every occurrence of each placeholder token with its variable's value.

    Pure: same inputs give byte-identical output. A token that appears in the
    template but whose variable has no value raises
    :class:`MissingPlaceholderValueError`.
    """
    rendered = template
    # Longest tokens first so a token that prefixes another cannot split it.
    for token in sorted(placeholders, key=lambda t: (-len(t), t)):
        if token not in rendered:
            continue
        variable = placeholders[token]
        value = context.get(variable)
        if not value:
            raise MissingPlaceholderValueError(token, variable, source)
        rendered = rendered.replace(token, value)
    return rendered


def derived_path(template_path: Path) -> Path:
    """``04-storage-class.yaml.template`` -> ``04-storage-class-updated.yaml``."""
    name = template_path.name
    if name.endswith(TEMPLATE_SUFFIX):
        name = name[: -len(TEMPLATE_SUFFIX)]
    stem, dot, suffix = name.rpartition(".")
    if not dot:
        return template_path.with_name(f"{name}-updated")
    return template_path.with_name(f"{stem}-updated.{suffix}")


def discover_templates(
    directory: str | Path,
    placeholders: Mapping[str, str] = DEFAULT_PLACEHOLDERS,
) -> list[TemplateSpec]:
    """Every ``*.template`` file in *directory*, sorted by name."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return [
        TemplateSpec(
            source=str(path),
            destination=str(derived_path(path)),
            placeholders=dict(placeholders),
        )
        for path in sorted(directory.glob(f"*{TEMPLATE_SUFFIX}"))
    ]


def unknown_tokens(text: str, placeholders: Mapping[str, str]) -> list[str]:
    """Sentinel-looking tokens (``fs-xxxx...``) that the placeholder map does not cover."""
    found = []
    for word in text.split():
        word = word.strip("\"',")
        if "xxxx" in word and word not in placeholders and word not in found:
            found.append(word)
    return found


def render_file(spec: TemplateSpec, context: Mapping[str, str]) -> Path:
    """Render *spec* into its destination. The source template is never modified."""
    source = Path(spec.source)
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as e:
        raise InvalidManifestError(f"Cannot read manifest template {source}: {e}") from e
    rendered = render(text, context, spec.placeholders, source=str(source))
    try:
        list(yaml.safe_load_all(rendered))
    except yaml.YAMLError as e:
        raise InvalidManifestError(f"Rendered manifest {source} is not valid YAML: {e}") from e

    destination = Path(spec.destination)
    try:
        destination.write_text(rendered, encoding="utf-8")
    except OSError as e:
        raise InvalidManifestError(f"Cannot write rendered manifest {destination}: {e}") from e
    logger.info("Rendered %s -> %s", source.name, destination.name)
    return destination
