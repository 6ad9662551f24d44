"""Secret lookup for header templates."""

from __future__ import annotations

import os
from typing import Mapping

from toolserver.config import settings


class SecretStore:
    """Resolves ``{{secret.KEY}}`` values: configured secrets first, then
    the upper-cased environment variable of the same name."""

    def __init__(self, secrets: Mapping[str, str] | None = None, environ: Mapping[str, str] | None = None):
        self.secrets = dict(settings.secrets if secrets is None else secrets)
        self.environ = os.environ if environ is None else environ

    def resolve(self, key: str) -> str | None:
        value = self.secrets.get(key)
        if value:
            return value
        return self.environ.get(key.upper()) or None

    def env(self, key: str) -> str | None:
        return self.environ.get(key) or None
