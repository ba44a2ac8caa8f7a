import pytest

from device_simulator import SimulatedDevice
from operator_client import OperatorClient, OperatorClientError, build_parser, run


@pytest.fixture
def operator(flask_session):
    return OperatorClient("http://server.test", session=flask_session)


def test_operator_login_sends_bearer_token(operator, flask_session):
    operator.login("admin", "s3cret")
    operator.send_command("floor1", "relay1", "ON")

    method, path, headers = flask_session.calls[-1]
    assert (method, path) == ("POST", "/command")
    assert headers["Authorization"] == f"Bearer {operator.token}"


def test_operator_bad_login_raises(operator):
    with pytest.raises(OperatorClientError) as exc:
        operator.login("admin", "wrong")
    assert exc.value.status_code == 401


def test_operator_without_login_is_rejected(operator):
    with pytest.raises(OperatorClientError) as exc:
        operator.get_status("floor1")
    assert exc.value.status_code == 401


def test_operator_config_roundtrip(operator):
    operator.login("admin", "s3cret")
    assert operator.save_config("floor1", {"relay1": {"maxCurrent": 8}}) == {"result": "saved"}
    assert operator.get_config("floor1") == {"relay1": {"maxCurrent": 8}}


def test_cli_command_and_status(operator, capsys):
    parser = build_parser()
    device = SimulatedDevice("floor1", "http://server.test", relay_count=2, session=operator.session)
    device.report_status()

    args = parser.parse_args(["-u", "admin", "-p", "s3cret", "command", "floor1", "relay2", "ON"])
    assert run(args, client=operator) == 0
    assert "queued" in capsys.readouterr().out

    args = parser.parse_args(["-u", "admin", "-p", "s3cret", "status", "floor1"])
    assert run(args, client=operator) == 0
    assert '"relay1": false' in capsys.readouterr().out


def test_cli_requires_credentials_for_operator_actions(operator, capsys):
    args = build_parser().parse_args(["--username", "", "status", "floor1"])
    args.password = None
    assert run(args, client=operator) == 1


def test_cli_rejects_invalid_config_json(operator):
    args = build_parser().parse_args(["-u", "admin", "-p", "s3cret", "config-set", "floor1", "{bad"])
    assert run(args, client=operator) == 1


def test_simulated_device_applies_queued_command(operator, flask_session):
    device = SimulatedDevice("floor1", "http://server.test", relay_count=2, session=flask_session)
    operator.login("admin", "s3cret")
    operator.save_config("floor1", {"interval": 10})
    operator.send_command("floor1", "relay1", "ON")

    command = device.poll_once()
    assert command == {"command": "ON", "relay": "relay1"}
    assert device.relays == {"relay1": True, "relay2": False}
    assert device.config == {"interval": 10}

    # the command was consumed by the first poll
    assert device.poll_once() == {}
    assert device.applied_commands == [{"command": "ON", "relay": "relay1"}]

    status = operator.get_status("floor1")
    assert status["relay1"] is True
    assert status["current"] > 0


def test_simulated_device_ignores_unknown_relay():
    device = SimulatedDevice("floor1", relay_count=1)
    assert device.apply({"command": "ON", "relay": "relay9"}) is False
    assert device.apply({"command": "TOGGLE", "relay": "relay1"}) is False
    assert device.relays == {"relay1": False}
