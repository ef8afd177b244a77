import dataclasses
import socket
import threading
import time

import pytest

from forward_manager.core.exceptions import ConfigError
from forward_manager.core.lib.forward_server import WorkerState
from forward_manager.core.supervisor import Supervisor, SupervisorState

LOOPBACK = "127.0.0.1"


@pytest.fixture
def supervisor(settings):
    supervisor = Supervisor(settings)
    yield supervisor
    supervisor.shutdown()


def rule_line(listen_port, forward_port, listen_ip=LOOPBACK):
    return f"{listen_ip}:{listen_port}:{LOOPBACK}:{forward_port}\n"


def echo(sock, payload):
    sock.sendall(payload)
    received = b""
    while len(received) < len(payload):
        data = sock.recv(len(payload) - len(received))
        if not data:
            break
        received += data
    return received


def assert_port_free(port):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((LOOPBACK, port))


def test_missing_config_is_fatal(supervisor):
    with pytest.raises(ConfigError):
        supervisor.start()

    assert supervisor.workers == []


def test_empty_config_runs_without_workers(supervisor, forwards_file):
    forwards_file("# nothing yet\n\n")

    supervisor.start()

    assert supervisor.state is SupervisorState.RUNNING
    assert supervisor.workers == []


def test_start_one_worker_per_rule(supervisor, forwards_file, free_port, echo_server, connect):
    ports = [free_port(), free_port()]
    forwards_file("".join(rule_line(port, echo_server.port) for port in ports))

    supervisor.start()

    assert supervisor.state is SupervisorState.RUNNING
    assert [worker.rule.listen_port for worker in supervisor.workers] == ports
    for port in ports:
        assert echo(connect(port), b"ping") == b"ping"


def test_conflicting_rule_not_activated(supervisor, forwards_file, free_port, echo_server):
    port = free_port()
    forwards_file(rule_line(port, echo_server.port) + rule_line(port, echo_server.port + 1))

    supervisor.start()

    assert len(supervisor.workers) == 1
    assert supervisor.workers[0].rule.forward_port == echo_server.port
    assert [warning.kind.value for warning in supervisor.ruleset.warnings] == ["conflict"]


def test_bind_failure_isolated(supervisor, forwards_file, free_port, echo_server, connect):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupier:
        occupier.bind((LOOPBACK, 0))
        occupier.listen(1)
        taken = occupier.getsockname()[1]
        healthy = free_port()
        forwards_file(rule_line(taken, echo_server.port) + rule_line(healthy, echo_server.port))

        supervisor.start()

        assert supervisor.state is SupervisorState.RUNNING
        assert [failure.endpoint for failure in supervisor.bind_failures] == [(LOOPBACK, taken)]
        assert [worker.rule.listen_port for worker in supervisor.workers] == [healthy]
        assert supervisor.workers[0].state is WorkerState.RUNNING
        assert echo(connect(healthy), b"ping") == b"ping"


def test_shutdown_with_active_connections(settings, forwards_file, free_port, echo_server, connect, wait_until):
    ports = [free_port(), free_port()]
    forwards_file("".join(rule_line(port, echo_server.port) for port in ports))
    supervisor = Supervisor(dataclasses.replace(settings, grace_period=0.5))
    supervisor.start()
    clients = [connect(port) for port in ports for _ in range(2)]
    for client in clients:
        assert echo(client, b"busy") == b"busy"
    workers = supervisor.workers
    assert wait_until(lambda: sum(worker.active_relays for worker in workers) == 4)

    serving = threading.Thread(target=supervisor.serve, daemon=True)
    serving.start()
    started = time.monotonic()
    assert supervisor.request_shutdown()
    serving.join(timeout=10)

    assert not serving.is_alive()
    assert time.monotonic() - started < 0.5 + 2.0
    assert supervisor.state is SupervisorState.TERMINATED
    assert supervisor.workers == []
    assert all(worker.state is WorkerState.STOPPED for worker in workers)
    for client in clients:
        assert client.recv(16) == b""
    for port in ports:
        assert_port_free(port)


def test_second_shutdown_request_ignored(supervisor, forwards_file):
    forwards_file("")
    supervisor.start()

    assert supervisor.request_shutdown()
    assert not supervisor.request_shutdown()
    supervisor.serve()

    assert supervisor.state is SupervisorState.TERMINATED
    supervisor.shutdown()
    assert supervisor.state is SupervisorState.TERMINATED


def test_reload_replaces_workers(supervisor, forwards_file, free_port, echo_server, connect):
    old_port, new_port = free_port(), free_port()
    forwards_file(rule_line(old_port, echo_server.port))
    supervisor.start()
    old_worker = supervisor.workers[0]

    forwards_file(rule_line(new_port, echo_server.port))
    supervisor.reload()

    assert supervisor.state is SupervisorState.RUNNING
    assert old_worker.state is WorkerState.STOPPED
    assert [worker.rule.listen_port for worker in supervisor.workers] == [new_port]
    assert echo(connect(new_port), b"ping") == b"ping"
    assert_port_free(old_port)


def test_reload_same_rules_rebinds(supervisor, forwards_file, free_port, echo_server, connect):
    port = free_port()
    forwards_file(rule_line(port, echo_server.port))
    supervisor.start()
    old_worker = supervisor.workers[0]

    supervisor.reload()

    assert supervisor.workers[0] is not old_worker
    assert supervisor.workers[0].state is WorkerState.RUNNING
    assert echo(connect(port), b"again") == b"again"


def test_run_services_reload_then_shutdown(settings, forwards_file, free_port, echo_server, wait_until):
    first, second = free_port(), free_port()
    forwards_file(rule_line(first, echo_server.port))
    supervisor = Supervisor(settings)
    running = threading.Thread(target=supervisor.run, daemon=True)
    running.start()
    assert wait_until(lambda: supervisor.state is SupervisorState.RUNNING)

    forwards_file(rule_line(second, echo_server.port))
    supervisor.request_reload()
    assert wait_until(
        lambda: [worker.rule.listen_port for worker in supervisor.workers] == [second]
    )
    supervisor.request_shutdown()
    running.join(timeout=10)

    assert not running.is_alive()
    assert supervisor.state is SupervisorState.TERMINATED


def test_reload_request_ignored_after_shutdown(supervisor, forwards_file):
    forwards_file("")
    supervisor.start()

    supervisor.request_shutdown()
    supervisor.request_reload()
    supervisor.serve()

    assert supervisor.state is SupervisorState.TERMINATED
