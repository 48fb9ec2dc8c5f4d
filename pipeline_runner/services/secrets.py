"""
Secret Provider
===============
Resolves ``${{ secrets.NAME }}`` handles at Run start.

Rules:
    - Secret values live only inside pydantic SecretStr handles and are
      unwrapped at the last moment, when a step's command / env / params are
      interpolated.
    - Every resolved value is registered with SecretRedactionFilter, so it
      is masked in logs and in captured step output until the run ends.
    - A missing secret is not an error at Run start. It becomes an
      environment failure at the first step that actually references it.

Lookup order for NAME:
    1. explicit mapping passed to the provider (tests, API callers)
    2. environment variable SECRET_PREFIX + NAME
    3. GITHUB_TOKEN from config, for the implicit repository token
"""
import os
import re
import logging
from typing import Mapping, Optional

from pydantic import SecretStr

from pipeline_runner.core.config import GITHUB_TOKEN, SECRET_PREFIX
from pipeline_runner.core.errors import SecretResolutionError
from pipeline_runner.models.pipeline import PackagedTask, Pipeline, ShellCommand
from pipeline_runner.utils.logging_config import SecretRedactionFilter

logger = logging.getLogger(__name__)

_EXPRESSION = re.compile(r"\$\{\{\s*(?P<scope>secrets|env)\.(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def referenced_secrets(pipeline: Pipeline) -> set[str]:
    """Names of every secret referenced anywhere in the pipeline."""
    texts: list[str] = list(pipeline.env.values())
    for step in pipeline.steps:
        texts.extend(step.env.values())
        if isinstance(step.action, ShellCommand):
            texts.append(step.action.command)
        elif isinstance(step.action, PackagedTask):
            texts.extend(step.action.params.values())
    names: set[str] = set()
    for text in texts:
        for m in _EXPRESSION.finditer(text):
            if m.group("scope") == "secrets":
                names.add(m.group("name"))
    return names


class SecretProvider:
    def __init__(self, values: Optional[Mapping[str, str]] = None,
                 prefix: str = SECRET_PREFIX,
                 github_token: Optional[str] = GITHUB_TOKEN) -> None:
        self._explicit = dict(values or {})
        self.prefix = prefix
        self.github_token = github_token

    def _lookup(self, name: str) -> Optional[str]:
        if name in self._explicit:
            return self._explicit[name]
        value = os.getenv(f"{self.prefix}{name}")
        if value:
            return value
        if name == "GITHUB_TOKEN" and self.github_token:
            return self.github_token
        return None

    def resolve(self, names: set[str]) -> dict[str, SecretStr]:
        """Resolve available secrets; missing names are simply absent."""
        resolved: dict[str, SecretStr] = {}
        for name in sorted(names):
            value = self._lookup(name)
            if value is None:
                logger.warning("Secret '%s' is referenced but not available", name)
                continue
            SecretRedactionFilter.register(value)
            resolved[name] = SecretStr(value)
        logger.info("Resolved %d of %d referenced secret(s)", len(resolved), len(names))
        return resolved

    def release(self, secrets: Mapping[str, SecretStr]) -> None:
        """Stop masking values resolved by ``resolve`` once their run has ended."""
        for secret in secrets.values():
            SecretRedactionFilter.unregister(secret.get_secret_value())


def interpolate(text: str, secrets: Mapping[str, SecretStr], env: Mapping[str, str]) -> str:
    """
    Substitute ``${{ secrets.X }}`` and ``${{ env.X }}`` expressions.

    Raises
    ------
    SecretResolutionError
        A referenced secret was not resolved.
    """
    def _replace(m: re.Match) -> str:
        name = m.group("name")
        if m.group("scope") == "secrets":
            if name not in secrets:
                raise SecretResolutionError(name)
            return secrets[name].get_secret_value()
        return env.get(name, "")

    return _EXPRESSION.sub(_replace, text)


def mask(text: str) -> str:
    """Replace every registered secret value in ``text``."""
    return SecretRedactionFilter.redact(text)
