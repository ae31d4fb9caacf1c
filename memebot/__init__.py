"""memebot package providing command routing and templated media generation."""

from . import (  # noqa: F401
    animation,
    arguments,
    assets,
    catalog,
    compose,
    engine,
    errors,
    models,
    router,
    settings,
    utils,
    variants,
)

__all__ = [
    "animation",
    "arguments",
    "assets",
    "catalog",
    "compose",
    "engine",
    "errors",
    "models",
    "router",
    "settings",
    "utils",
    "variants",
]
