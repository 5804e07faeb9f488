"""Shared fixtures: an in-memory stand-in for the Secret Manager client."""
import threading
import time
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as gcp_exceptions

from vaultsync.secrets.domains.vault_client import (
    ANNOTATION_NAME,
    KIND_FOLDER,
    KIND_GROUP,
    KIND_RESOURCE,
    LABEL_FOLDER,
    LABEL_KIND,
    VaultClient,
    decode_value,
    encode_value,
)

PROJECT_ID = "test-project"


def _secret_id(path):
    return path.split("/secrets/", 1)[1].split("/", 1)[0]


class FakeSecretManager:
    """Implements the subset of SecretManagerServiceClient that VaultClient calls."""

    def __init__(self):
        self.secrets = {}
        self.versions = {}
        self.policies = {}
        self.calls = []
        self.timeouts = []
        self.failures = {}
        self.delays = {}
        self._lock = threading.Lock()
        self._counter = 0

    # Test helpers

    def fail(self, method, *errors):
        """Queue exceptions raised by the next calls to method."""
        self.failures.setdefault(method, []).extend(errors)

    def slow(self, method, seconds):
        """Make every call to method take this long."""
        self.delays[method] = seconds

    def _next_id(self, prefix):
        self._counter += 1
        return f"{prefix}-{self._counter:04d}"

    def add_secret(self, kind, name, labels=None, secret_id=None):
        secret_id = secret_id or self._next_id(kind)
        self.secrets[secret_id] = SimpleNamespace(
            name=f"projects/{PROJECT_ID}/secrets/{secret_id}",
            labels={LABEL_KIND: kind, **(labels or {})},
            annotations={ANNOTATION_NAME: name},
        )
        self.versions[secret_id] = []
        return secret_id

    def add_folder(self, name, bindings=None):
        folder_id = self.add_secret(KIND_FOLDER, name)
        self.policies[folder_id] = SimpleNamespace(
            bindings=[SimpleNamespace(role=role, members=list(members)) for role, members in (bindings or {}).items()]
        )
        return folder_id

    def add_resource(self, folder_id, name, value):
        resource_id = self.add_secret(KIND_RESOURCE, name, {LABEL_FOLDER: folder_id})
        self.versions[resource_id].append(encode_value(value).encode("UTF-8"))
        return resource_id

    def add_group(self, name, payload):
        group_id = self.add_secret(KIND_GROUP, name)
        self.versions[group_id].append(payload.encode("UTF-8"))
        return group_id

    def latest(self, secret_id):
        return self.versions[secret_id][-1].decode("UTF-8")

    def value(self, resource_id):
        return decode_value(self.latest(resource_id))

    def by_name(self, name):
        return [sid for sid, secret in self.secrets.items() if secret.annotations.get(ANNOTATION_NAME) == name]

    # SecretManagerServiceClient surface

    def _record(self, method, request, timeout):
        with self._lock:
            self.calls.append((method, request))
            self.timeouts.append((method, timeout))
            queued = self.failures.get(method)
            if queued:
                raise queued.pop(0)
            delay = self.delays.get(method)
        if delay:
            # Behave like a gRPC call: give up once the timeout passes
            if timeout is not None and timeout < delay:
                time.sleep(timeout)
                raise gcp_exceptions.DeadlineExceeded(f"{method} exceeded {timeout:.3f}s")
            time.sleep(delay)

    def list_secrets(self, request, timeout=None):
        self._record("list_secrets", request, timeout)
        wanted = {}
        for clause in request.get("filter", "").split(" AND "):
            key, _, value = clause.partition("=")
            wanted[key.replace("labels.", "", 1)] = value
        return [
            secret for secret in self.secrets.values()
            if all(secret.labels.get(k) == v for k, v in wanted.items())
        ]

    def get_secret(self, request, timeout=None):
        self._record("get_secret", request, timeout)
        secret_id = _secret_id(request["name"])
        if secret_id not in self.secrets:
            raise gcp_exceptions.NotFound(f"Secret [{request['name']}] not found")
        return self.secrets[secret_id]

    def create_secret(self, request, timeout=None):
        self._record("create_secret", request, timeout)
        secret_id = request["secret_id"]
        if secret_id in self.secrets:
            raise gcp_exceptions.AlreadyExists(f"Secret [{secret_id}] already exists")
        secret = request["secret"]
        self.secrets[secret_id] = SimpleNamespace(
            name=f"{request['parent']}/secrets/{secret_id}",
            labels=dict(secret.get("labels", {})),
            annotations=dict(secret.get("annotations", {})),
        )
        self.versions[secret_id] = []
        self.policies.setdefault(secret_id, SimpleNamespace(bindings=[]))
        return self.secrets[secret_id]

    def add_secret_version(self, request, timeout=None):
        self._record("add_secret_version", request, timeout)
        secret_id = _secret_id(request["parent"])
        if secret_id not in self.secrets:
            raise gcp_exceptions.NotFound(f"Secret [{request['parent']}] not found")
        self.versions[secret_id].append(request["payload"]["data"])
        return SimpleNamespace(name=f"{request['parent']}/versions/{len(self.versions[secret_id])}")

    def access_secret_version(self, request, timeout=None):
        self._record("access_secret_version", request, timeout)
        secret_id = _secret_id(request["name"])
        if not self.versions.get(secret_id):
            raise gcp_exceptions.NotFound(f"Secret Version [{request['name']}] not found")
        return SimpleNamespace(payload=SimpleNamespace(data=self.versions[secret_id][-1]))

    def update_secret(self, request, timeout=None):
        self._record("update_secret", request, timeout)
        secret_id = _secret_id(request["secret"]["name"])
        self.secrets[secret_id].labels = dict(request["secret"]["labels"])
        return self.secrets[secret_id]

    def get_iam_policy(self, request, timeout=None):
        self._record("get_iam_policy", request, timeout)
        secret_id = _secret_id(request["resource"])
        if secret_id not in self.secrets:
            raise gcp_exceptions.NotFound(f"Secret [{request['resource']}] not found")
        return self.policies.get(secret_id, SimpleNamespace(bindings=[]))


@pytest.fixture
def secret_manager():
    return FakeSecretManager()


@pytest.fixture
def vault(secret_manager):
    return VaultClient(PROJECT_ID, client=secret_manager)
