import pytest

from editserver.config import ServerConfig, parse_tcp_address
from editserver.rendezvous import (
    SECRET_LENGTH,
    Kind,
    RendezvousEndpoint,
    generate_secret,
    parse_server_file,
    read_server_file,
    write_server_file,
)


def test_generate_secret():
    a, b = generate_secret(), generate_secret()
    assert len(a) == SECRET_LENGTH, a
    assert a != b
    assert all("!" <= c <= "~" for c in a), a


def test_endpoint_validation():
    assert RendezvousEndpoint.local("/tmp/s").requires_auth is False
    assert RendezvousEndpoint.tcp("127.0.0.1", 0).requires_auth is True

    with pytest.raises(ValueError):
        RendezvousEndpoint(Kind.LOCAL)
    with pytest.raises(ValueError):
        RendezvousEndpoint(Kind.TCP, host="h", port=1, secret="short")
    with pytest.raises(ValueError):
        RendezvousEndpoint(Kind.TCP, host="h", port=1, secret=" " * 64)
    with pytest.raises(ValueError):
        RendezvousEndpoint.tcp("h", 70000)
    with pytest.raises(ValueError):
        RendezvousEndpoint.tcp("", 1)


def test_server_file(tmp_path):
    secret = "x" * 63 + "&"
    endpoint = RendezvousEndpoint.tcp("127.0.0.1", 4711, secret)
    path = tmp_path / "server"
    write_server_file(str(path), endpoint)
    assert path.read_text() == "127.0.0.1:4711\n" + secret
    assert read_server_file(str(path)) == endpoint

    result = parse_server_file("10.0.0.2:80\n" + secret + "\n")
    assert (result.host, result.port) == ("10.0.0.2", 80), result

    for bad in ["", "nohost\n" + secret, "1.2.3.4:port\n" + secret]:
        with pytest.raises(ValueError):
            parse_server_file(bad)


def test_config_from_env():
    config = ServerConfig.from_env({
        "EDITSERVER_SOCKET": "",
        "EDITSERVER_TCP": "9999",
        "EDITSERVER_ERROR_DELAY": "0.5",
    })
    assert config.socket_path is None
    assert (config.tcp_host, config.tcp_port) == ("127.0.0.1", 9999)
    assert config.error_delay == 0.5
    [endpoint] = config.endpoints()
    assert endpoint.kind is Kind.TCP and endpoint.port == 9999

    config = ServerConfig.from_env({"EDITSERVER_SOCKET": "/run/x"})
    assert config.endpoints() == [RendezvousEndpoint.local("/run/x")]

    config = config.override(socket_path=None, tcp_host="0.0.0.0")
    assert config.socket_path == "/run/x" and config.tcp_host == "0.0.0.0"

    with pytest.raises(ValueError):
        ServerConfig(socket_path=None).endpoints()


def test_parse_tcp_address():
    assert parse_tcp_address(":0") == ("127.0.0.1", 0)
    assert parse_tcp_address("0.0.0.0:80") == ("0.0.0.0", 80)
    assert parse_tcp_address("8080") == ("127.0.0.1", 8080)
    with pytest.raises(ValueError):
        parse_tcp_address("host:port")
