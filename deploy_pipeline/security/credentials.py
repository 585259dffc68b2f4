"""
Credentials
===========
Named secrets and their per-stage scoping.

A CredentialStore holds every binding the pipeline knows. Stages never
read it directly: the executor checks out a ScopedCredentials handle that
exposes only the bindings the stage declared, and invalidates the handle
when the stage exits, success or failure.

Secret values are registered with the log redaction filter the moment a
binding is added, so they are masked in every log line from then on.
"""
import logging
import os
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional

from pydantic import BaseModel, SecretStr

from deploy_pipeline.core.constants import (
    ANALYSIS_CREDENTIAL,
    DEPLOY_CREDENTIAL,
    REGISTRY_CREDENTIAL,
    SCM_CREDENTIAL,
)
from deploy_pipeline.core.errors import CredentialScopeError
from deploy_pipeline.utils.logging_config import register_secret

logger = logging.getLogger(__name__)


class CredentialBinding(BaseModel):
    name: str
    secrets: Dict[str, SecretStr] = {}

    def secret_values(self) -> List[str]:
        return [v.get_secret_value() for v in self.secrets.values() if v.get_secret_value()]


class ScopedCredentials:
    """
    Read-only view over the bindings one stage declared.

    Accessing an undeclared binding, or any binding after the stage
    exited, raises CredentialScopeError.
    """

    def __init__(self, stage_name: str, bindings: Dict[str, CredentialBinding]) -> None:
        self.stage_name = stage_name
        self._bindings = dict(bindings)
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def names(self) -> List[str]:
        return sorted(self._bindings)

    def has(self, name: str) -> bool:
        return not self._released and name in self._bindings

    def get(self, name: str, field: str) -> str:
        """Return the secret value of ``name.field``."""
        if self._released:
            raise CredentialScopeError(
                f"Credential '{name}' accessed after stage '{self.stage_name}' exited"
            )
        binding = self._bindings.get(name)
        if binding is None:
            raise CredentialScopeError(
                f"Stage '{self.stage_name}' did not declare credential '{name}'"
            )
        value = binding.secrets.get(field)
        if value is None:
            raise CredentialScopeError(f"Credential '{name}' has no field '{field}'")
        return value.get_secret_value()

    def get_optional(self, name: str, field: str) -> Optional[str]:
        """Like get(), but None when the binding or field is absent from the store."""
        if self._released:
            raise CredentialScopeError(
                f"Credential '{name}' accessed after stage '{self.stage_name}' exited"
            )
        binding = self._bindings.get(name)
        if binding is None:
            return None
        value = binding.secrets.get(field)
        return value.get_secret_value() if value is not None else None

    def release(self) -> None:
        self._bindings.clear()
        self._released = True

    def __repr__(self) -> str:
        state = "released" if self._released else "active"
        return f"ScopedCredentials(stage={self.stage_name!r}, names={self.names}, {state})"


class CredentialStore:
    """Process-wide registry of credential bindings."""

    def __init__(self) -> None:
        self._bindings: Dict[str, CredentialBinding] = {}
        self._lock = threading.Lock()

    def add(self, name: str, **fields: Optional[str]) -> None:
        """Register a binding. Empty field values are dropped."""
        clean = {k: SecretStr(v) for k, v in fields.items() if v}
        binding = CredentialBinding(name=name, secrets=clean)
        for value in binding.secret_values():
            register_secret(value)
        with self._lock:
            self._bindings[name] = binding

    def known(self) -> List[str]:
        with self._lock:
            return sorted(self._bindings)

    @contextmanager
    def checkout(self, stage_name: str, names: Iterable[str]) -> Iterator[ScopedCredentials]:
        """
        Yield a handle exposing only ``names`` for the duration of a stage.

        Declared bindings missing from the store are simply absent from the
        handle; the stage decides whether that is fatal.
        """
        with self._lock:
            scoped = {n: self._bindings[n] for n in names if n in self._bindings}
        handle = ScopedCredentials(stage_name, scoped)
        if scoped:
            logger.debug("Credentials checked out for %s: %s", stage_name, handle.names)
        try:
            yield handle
        finally:
            handle.release()
            if scoped:
                logger.debug("Credentials released for %s", stage_name)

    @classmethod
    def from_env(cls) -> "CredentialStore":
        """Build the store from the process environment (see core.config)."""
        store = cls()
        store.add(SCM_CREDENTIAL, token=os.getenv("SCM_TOKEN"))
        store.add(
            REGISTRY_CREDENTIAL,
            username=os.getenv("REGISTRY_USERNAME"),
            password=os.getenv("REGISTRY_PASSWORD"),
        )
        store.add(ANALYSIS_CREDENTIAL, token=os.getenv("SONAR_TOKEN"))
        store.add(
            DEPLOY_CREDENTIAL,
            access_key_id=os.getenv("DEPLOY_AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("DEPLOY_AWS_SECRET_ACCESS_KEY"),
            session_token=os.getenv("DEPLOY_AWS_SESSION_TOKEN"),
        )
        return store
