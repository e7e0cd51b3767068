import pytest

from signaling.channels import (
    ChannelKind,
    ChannelRouter,
    conversation_id,
    group_channel_id,
    parse_channel_id,
    user_channel_id,
)
from signaling.errors import BadRequest


@pytest.mark.parametrize("first,second", [(1, 2), ("2", "1"), (10, 9), ("abc", "abd"), (7, "x")])
def test_pair_topic_is_symmetric(first, second):
    router = ChannelRouter(topic_prefix="")
    assert router.pair_topic(first, second) == router.pair_topic(second, first)


def test_pair_ids_sort_numerically():
    assert conversation_id(10, 9) == "conv-9-10"
    assert conversation_id("2", 1) == "conv-1-2"


def test_resolve_topic_applies_prefix():
    router = ChannelRouter(topic_prefix="private-")
    assert router.resolve_topic("conv-1-2") == "private-conv-1-2"
    assert router.resolve_topic(group_channel_id(7)) == "private-group-7"


def test_parse_channel_id():
    assert parse_channel_id("conv-1-2") == (ChannelKind.CONVERSATION, ("1", "2"))
    assert parse_channel_id("group-7") == (ChannelKind.GROUP_TYPING, ("7",))
    assert parse_channel_id(user_channel_id(4)) == (ChannelKind.USER, ("4",))


@pytest.mark.parametrize("channel_id", ["conv-2-1", "conv-1", "room-1", "group-", "", None])
def test_parse_rejects_malformed_ids(channel_id):
    with pytest.raises(BadRequest):
        parse_channel_id(channel_id)


def test_join_is_idempotent_and_leave_marks_empty(clock):
    router = ChannelRouter(clock=clock)
    router.join("group-7", "1")
    router.join("group-7", "1")
    router.join("group-7", "2")
    assert router.members("group-7") == {"1", "2"}

    router.leave("group-7", "1")
    assert router.get("group-7").emptied_at is None
    router.leave("group-7", "2")
    assert router.get("group-7").emptied_at == clock.now


def test_sweep_waits_for_grace_period(clock):
    router = ChannelRouter(gc_grace=300, clock=clock)
    router.join("conv-1-2", "1")
    router.leave("conv-1-2", "1")

    clock.advance(299)
    assert router.sweep() == 0
    assert router.get("conv-1-2") is not None

    clock.advance(1)
    assert router.sweep() == 1
    assert router.get("conv-1-2") is None


def test_rejoin_cancels_collection(clock):
    router = ChannelRouter(gc_grace=10, clock=clock)
    router.join("conv-1-2", "1")
    router.leave("conv-1-2", "1")
    router.join("conv-1-2", "2")
    clock.advance(60)
    assert router.sweep() == 0
    assert router.members("conv-1-2") == {"2"}


def test_typing_keeps_latest_value_only():
    router = ChannelRouter()
    router.set_typing("conv-1-2", "1", True)
    router.set_typing("conv-1-2", "1", True)
    router.set_typing("conv-1-2", "1", False)
    assert router.get("conv-1-2").typing == {"1": False}


def test_typing_only_channel_is_collected(clock):
    router = ChannelRouter(gc_grace=300, clock=clock)
    router.set_typing("conv-1-2", "1", True)

    clock.advance(10000)

    assert router.sweep() == 1
    assert len(router) == 0
    assert router._locks == {}


def test_idle_group_channel_is_collected(clock):
    router = ChannelRouter(gc_grace=300, clock=clock)
    router.join("group-7", "1")

    clock.advance(200)
    router.set_typing("group-7", "1", True)
    clock.advance(200)
    assert router.sweep() == 0

    clock.advance(100)
    assert router.sweep() == 1
    assert router.get("group-7") is None


def test_default_topics_are_private():
    router = ChannelRouter()
    for channel_id in ("conv-1-2", group_channel_id(7), user_channel_id(1)):
        assert router.resolve_topic(channel_id).startswith("private-")


@pytest.mark.parametrize("prefix", ["private-", "presence-"])
def test_may_subscribe_to_published_topics(prefix):
    router = ChannelRouter(topic_prefix=prefix)
    router.join("group-7", "1")

    conv = router.pair_topic(2, 1)
    user = router.resolve_topic(user_channel_id(1))
    group = router.resolve_topic(group_channel_id(7))

    assert router.may_subscribe("1", conv)
    assert router.may_subscribe("2", conv)
    assert not router.may_subscribe("3", conv)
    assert router.may_subscribe("1", user)
    assert not router.may_subscribe("2", user)
    assert router.may_subscribe("1", group)
    assert not router.may_subscribe("2", group)


def test_may_subscribe_rejects_foreign_names():
    router = ChannelRouter(topic_prefix="private-")
    assert not router.may_subscribe("1", "user-1")
    assert not router.may_subscribe("1", "presence-user-1")
    assert not router.may_subscribe("1", "private-private-user-1")
    assert not router.may_subscribe("1", "private-nonsense")
    assert not router.may_subscribe("1", None)


@pytest.mark.parametrize("value", ["6f1c2a-44aa-4b1e", "a-b", "-"])
def test_ids_containing_dashes_are_rejected(value):
    with pytest.raises(BadRequest) as exc:
        conversation_id(value, "1")
    assert exc.value.code == "invalid_identity"

    with pytest.raises(BadRequest) as exc:
        group_channel_id(value)
    assert exc.value.code == "invalid_group_id"
