from ble_settings_link.client import __main__ as client_cli
from ble_settings_link.config import SCAN_TIMEOUT, SERVICE_UUID
from ble_settings_link.server import __main__ as server_cli


def test_client_send_uses_defaults() -> None:
    args = client_cli.build_parser().parse_args(["send", "ping"])
    config = client_cli.build_config(args)

    assert args.command == "send"
    assert args.message == "ping"
    assert config.service_uuid == SERVICE_UUID
    assert config.scan_timeout == SCAN_TIMEOUT
    assert config.auto_connect


def test_client_scan_timeout_overrides_global_timeout() -> None:
    args = client_cli.build_parser().parse_args(["--timeout", "20", "scan", "-t", "3"])
    config = client_cli.build_config(args, auto_connect=False)

    assert config.scan_timeout == 3
    assert not config.auto_connect


def test_client_without_command_prints_help(capsys) -> None:
    assert client_cli.main([]) == 0
    assert "usage" in capsys.readouterr().out


def test_client_rejects_bad_uuid(capsys) -> None:
    assert client_cli.main(["--service", "nope", "read"]) == 1
    assert "Invalid configuration" in capsys.readouterr().out


def test_server_options() -> None:
    args = server_cli.build_parser().parse_args(
        ["--name", "Lab", "--strict-ack", "--relay-port", "9000", "-v"]
    )

    assert args.name == "Lab"
    assert args.strict_ack
    assert args.relay_port == 9000
    assert args.verbose
