from petchat.utils.websocket_manager import ConnectionRegistry


class Handle:
    pass


def test_multiple_handles_per_user():
    registry = ConnectionRegistry()
    tab, phone = Handle(), Handle()
    registry.register("u1", tab)
    registry.register("u1", phone)

    assert registry.handles_for("u1") == {tab, phone}
    assert registry.is_online("u1")


def test_register_is_idempotent():
    registry = ConnectionRegistry()
    tab = Handle()
    registry.register("u1", tab)
    registry.register("u1", tab)

    assert registry.handles_for("u1") == {tab}
    assert len(registry) == 1
    assert tab in registry


def test_last_unregister_drops_the_user():
    registry = ConnectionRegistry()
    tab, phone = Handle(), Handle()
    registry.register("u1", tab)
    registry.register("u1", phone)

    assert registry.unregister(tab) == "u1"
    assert registry.is_online("u1")
    assert registry.unregister(phone) == "u1"
    assert not registry.is_online("u1")
    assert registry.handles_for("u1") == set()
    assert "u1" not in registry._by_user


def test_unknown_user_and_handle():
    registry = ConnectionRegistry()

    assert registry.handles_for("nobody") == set()
    assert registry.unregister(Handle()) is None


def test_handles_for_returns_a_copy():
    registry = ConnectionRegistry()
    tab = Handle()
    registry.register("u1", tab)

    registry.handles_for("u1").clear()

    assert registry.handles_for("u1") == {tab}


def test_handle_moves_when_registered_to_another_user():
    registry = ConnectionRegistry()
    tab = Handle()
    registry.register("u1", tab)
    registry.register("u2", tab)

    assert registry.handles_for("u1") == set()
    assert registry.handles_for("u2") == {tab}
    assert not registry.is_online("u1")
