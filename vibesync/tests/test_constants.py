"""Tests for message status ordering."""

import pytest

from vibesync.constants import MessageStatus


def test_status_annotations_are_deferred():
    assert MessageStatus.can_advance_to.__annotations__["target"] == "MessageStatus"


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (MessageStatus.PENDING, MessageStatus.SENT, True),
        (MessageStatus.SENT, MessageStatus.READ, True),
        (MessageStatus.FAILED, MessageStatus.SENT, True),
        (MessageStatus.READ, MessageStatus.SENT, False),
        (MessageStatus.DELIVERED, MessageStatus.FAILED, False),
        (MessageStatus.SENT, MessageStatus.SENT, True),
    ],
)
def test_can_advance_to(current, target, allowed):
    assert current.can_advance_to(target) is allowed
