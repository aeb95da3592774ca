import socket
import sys
import threading

import pytest

# Ensure project root is importable (so `import pdbmgr` / `import cli` work without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from pdbmgr.errors import ConflictError, PolicyNotFoundError, TransientApiError  # noqa: E402
from pdbmgr.kube import PolicySnapshot  # noqa: E402
from pdbmgr.policy import ConstraintField, ThresholdPolicy  # noqa: E402
from pdbmgr.protocol import ServerStatus, handshake_packet, status_request_packet  # noqa: E402
from pdbmgr.settings import Settings  # noqa: E402


class InMemoryPolicyStore:
    """PolicyStore fake with a resourceVersion that bumps on every write."""

    def __init__(self, min_available=None, max_unavailable=None, exists=True):
        self.exists = exists
        self.version = 1
        self.spec = {"minAvailable": min_available, "maxUnavailable": max_unavailable}
        self.gets = 0
        self.writes = []  # (field, value) per accepted update
        self.conflicts_to_raise = 0
        self.transients_to_raise = 0

    def _snap(self, namespace, name):
        return PolicySnapshot(
            namespace=namespace,
            name=name,
            resource_version=str(self.version),
            min_available=self.spec["minAvailable"],
            max_unavailable=self.spec["maxUnavailable"],
        )

    def external_edit(self):
        """Someone else touched the object."""
        self.version += 1

    def get(self, namespace, name):
        self.gets += 1
        if not self.exists:
            raise PolicyNotFoundError(f"PodDisruptionBudget {namespace}/{name} does not exist")
        return self._snap(namespace, name)

    def conditional_update(self, namespace, name, resource_version, field, value):
        assert resource_version, "update submitted without a resource version"
        if self.transients_to_raise:
            self.transients_to_raise -= 1
            raise TransientApiError("HTTP 503 Service Unavailable")
        if self.conflicts_to_raise:
            self.conflicts_to_raise -= 1
            self.external_edit()
        if resource_version != str(self.version):
            raise ConflictError(f"version {resource_version} != {self.version}")
        self.version += 1
        self.spec[field.value] = value
        self.writes.append((field.value, value))
        return self._snap(namespace, name)


class ScriptedProber:
    """Returns (or raises) the queued results in order; repeats the last one."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, host, port, timeout):
        self.calls.append((host, port, timeout))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def status(online, maximum=20):
    return ServerStatus(online=online, max=maximum)


def make_settings(**overrides):
    values = dict(
        namespace="games",
        pdb_name="minecraft",
        server_host="mc.example",
        server_port=25565,
        update_interval_s=10.0,
        probe_timeout_s=5.0,
        policy=ThresholdPolicy(),
        pdb_field=ConstraintField.MIN_AVAILABLE,
        apply_backoff_s=0.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def store():
    return InMemoryPolicyStore(min_available=0)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def status_server():
    """Start a one-shot TCP server that reads the request and replies with given bytes.

    Yields a function: serve(reply_bytes, close=True, drip=None) -> (host, port, received_holder).
    With `drip` set the reply goes out one byte per `drip` seconds.
    """
    servers = []

    def serve(reply, close=True, drip=None):
        srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        srv.bind(("127.0.0.1", 0))
        srv.listen(1)
        servers.append(srv)
        port = srv.getsockname()[1]
        expected = len(handshake_packet("127.0.0.1", port) + status_request_packet())
        received = {"data": b""}
        done = threading.Event()

        def run():
            try:
                conn, _ = srv.accept()
            except OSError:
                return
            with conn:
                conn.settimeout(2)
                try:
                    # Read the whole request so closing does not reset the connection.
                    while len(received["data"]) < expected:
                        chunk = conn.recv(4096)
                        if not chunk:
                            break
                        received["data"] += chunk
                    if drip is None:
                        conn.sendall(reply)
                    else:
                        for i in range(len(reply)):
                            if done.wait(drip):
                                break
                            conn.sendall(reply[i : i + 1])
                    if not close:
                        done.wait(5)
                except OSError:
                    pass

        t = threading.Thread(target=run, daemon=True)
        t.start()
        received["release"] = done
        return "127.0.0.1", port, received

    yield serve

    for srv in servers:
        srv.close()
