"""Tests for CollaborationSpace."""

from taskteam.core.space import CollaborationSpace


class TestPublish:
    def test_publish_defaults_to_output(self):
        space = CollaborationSpace()
        message = space.publish("w1", "hello")
        assert message.kind == "output"
        assert message.sender == "w1"
        assert message.id == 1

    def test_ids_increase(self):
        space = CollaborationSpace()
        first = space.publish("a", "1")
        second = space.publish("b", "2", "review")
        assert (first.id, second.id) == (1, 2)
        assert second.kind == "review"


class TestBuildContext:
    def test_renders_every_message_in_order(self):
        space = CollaborationSpace()
        space.publish("system", "New task", "info")
        space.publish("w1", "first")
        space.publish("reviewer", "looks fine", "review")
        assert space.build_context() == (
            "[system]: New task\n\n[w1]: first\n\n[reviewer]: looks fine"
        )

    def test_empty(self):
        assert CollaborationSpace().build_context() == ""


class TestHistory:
    def test_history_is_copy(self):
        space = CollaborationSpace()
        space.publish("w1", "x")
        history = space.history()
        history.clear()
        assert len(space) == 1

    def test_repr(self):
        space = CollaborationSpace()
        space.publish("w1", "x")
        assert repr(space) == "CollaborationSpace(messages=1)"
