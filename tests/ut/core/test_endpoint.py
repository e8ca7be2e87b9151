from pathlib import Path

import pytest

from pipelink.core.errors import EndpointConnectError
from pipelink.core.transport.endpoint import PipeEndpoint, default_socket_dir, resolve_endpoint


@pytest.mark.ut
def test_resolve_endpoint_in_given_directory(tmp_path):
    assert resolve_endpoint("svc", tmp_path) == tmp_path / "pipelink-svc.sock"


@pytest.mark.ut
def test_same_name_resolves_to_same_path():
    assert resolve_endpoint("svc") == resolve_endpoint("svc")
    assert resolve_endpoint("svc").parent == default_socket_dir()


@pytest.mark.ut
def test_default_socket_dir_prefers_runtime_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))
    assert default_socket_dir() == tmp_path

    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path / "missing"))
    assert default_socket_dir() != tmp_path / "missing"


@pytest.mark.ut
@pytest.mark.parametrize("name", ["", " svc", "a/b", "a\\b", "..", "nul\0"])
def test_invalid_names_are_rejected(name):
    with pytest.raises(ValueError):
        resolve_endpoint(name, Path("/tmp"))


@pytest.mark.ut
def test_path_too_long_is_rejected():
    with pytest.raises(ValueError):
        resolve_endpoint("x" * 120, Path("/tmp"))


@pytest.mark.ut
def test_endpoint_requires_at_least_one_instance():
    with pytest.raises(ValueError):
        PipeEndpoint("svc", max_instances=0, socket_dir=Path("/tmp"))


@pytest.mark.ut
def test_arm_before_open_is_refused():
    endpoint = PipeEndpoint("svc", socket_dir=Path("/tmp"))

    class Listener:
        id = "l1"

        def attach(self, reader, writer):
            raise AssertionError("not expected")

    with pytest.raises(EndpointConnectError):
        endpoint.arm(Listener())
    assert endpoint.instances == 0
