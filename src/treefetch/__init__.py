"""
treefetch - fetch Git sources into a content-addressed store.

Public entry points are :class:`GitFetcher` (and the module-level
:func:`fetch` / :func:`lazy_fetch` helpers), the :class:`GitInput` request
model, and the accessor/dump layer used to hash and ingest trees.
"""
from .errors import TreefetchError
from .fetcher import GitFetcher, fetch, lazy_fetch
from .inputs import GitInput, apply_overrides, has_all_info, to_url
from .settings import Settings, create_settings_from_env

__version__ = "0.1.0"

__all__ = [
    "GitFetcher",
    "GitInput",
    "Settings",
    "TreefetchError",
    "apply_overrides",
    "create_settings_from_env",
    "fetch",
    "has_all_info",
    "lazy_fetch",
    "to_url",
]
