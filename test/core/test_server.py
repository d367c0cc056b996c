import pytest

from server_scheduler.error import InvalidServerError


def test_session_name_joins_game_and_moniker(make_server):
    server = make_server(game="valheim", moniker="world-2")
    assert server.session_name == "valheim_world-2"


@pytest.mark.parametrize("game", ["", "Minecraft", "mine craft", "mine_craft"])
def test_invalid_game_is_rejected(make_server, game):
    with pytest.raises(InvalidServerError):
        make_server(game=game)


@pytest.mark.parametrize("moniker", ["", "UPPER", "a.b"])
def test_invalid_moniker_is_rejected(make_server, moniker):
    with pytest.raises(InvalidServerError):
        make_server(moniker=moniker)


@pytest.mark.parametrize("port", [-1, 65536, None])
def test_port_out_of_range_is_rejected(make_server, port):
    with pytest.raises(InvalidServerError):
        make_server(port=port)


@pytest.mark.parametrize("port", [0, 65535])
def test_port_bounds_are_accepted(make_server, port):
    assert make_server(port=port).port == port


@pytest.mark.parametrize("field", ["description", "stop_command", "warn_command", "sid"])
def test_none_fields_are_rejected(make_server, field):
    with pytest.raises(InvalidServerError):
        make_server(**{field: None})


def test_server_is_frozen(make_server):
    server = make_server()
    with pytest.raises(AttributeError):
        server.port = 1
