"""Pipeline functions. Importing this package registers them on events.registry.registry."""

from docintel.pipeline import analysis, embedding, extraction, maintenance, notifications  # noqa: F401
