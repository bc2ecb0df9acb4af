"""Framework plugins and the language registry that selects them."""

from __future__ import annotations

from typing import List

from ..parsers import available_languages, canonical_language, get_backend
from .base import SCHEMA_REF_PREFIX, FrameworkPlugin, infer_tags, operation_id
from .frameworks import PLUGINS


def get_plugin(language: str, include_private: bool = False) -> FrameworkPlugin:
    """Instantiate the plugin registered for ``language`` (aliases accepted).

    Languages contributed through the ``apiscan.backends`` entry-point group
    have no plugin class of their own; they get a plain :class:`FrameworkPlugin`
    bound to their backend. Unknown languages raise ``UnsupportedLanguageError``.
    """
    name = canonical_language(language)
    plugin_cls = PLUGINS.get(name)
    if plugin_cls is not None:
        return plugin_cls(include_private=include_private)
    plugin = FrameworkPlugin(include_private=include_private, backend=get_backend(language))
    plugin.language = name
    return plugin


def available_plugins() -> List[str]:
    return sorted(set(PLUGINS) | set(available_languages()))


__all__ = [
    "FrameworkPlugin",
    "SCHEMA_REF_PREFIX",
    "available_plugins",
    "get_plugin",
    "infer_tags",
    "operation_id",
]
