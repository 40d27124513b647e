from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from agentstream.adapters.event_bus import LocalChannelBus
from agentstream.engine.errors import SubscriptionError


@pytest.mark.asyncio
async def test_publish_reaches_subscribers_in_order():
    bus = LocalChannelBus()
    received = []
    await bus.subscribe("process-output-p1", received.append)

    assert bus.publish_output("p1", "one", timestamp="t") == 1
    bus.publish_output("p1", "two", output_type="stderr")
    bus.publish_output("p2", "elsewhere")

    assert received == [
        {"content": "one", "outputType": "stdout", "timestamp": "t"},
        {"content": "two", "outputType": "stderr", "timestamp": ""},
    ]


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent():
    bus = LocalChannelBus()
    unsubscribe = await bus.subscribe("process-status-p1", MagicMock())

    unsubscribe()
    unsubscribe()

    assert bus.subscriber_count("process-status-p1") == 0
    assert bus.publish_status("p1", "running") == 0


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_others():
    bus = LocalChannelBus()
    good = MagicMock()
    await bus.subscribe("c", MagicMock(side_effect=ValueError("bad")))
    await bus.subscribe("c", good)

    assert bus.publish("c", {"x": 1}) == 1
    good.assert_called_once_with({"x": 1})


@pytest.mark.asyncio
async def test_closed_bus_rejects_and_reset_reopens():
    bus = LocalChannelBus()
    await bus.send_input("p1", "y\n")
    bus.close()

    with pytest.raises(SubscriptionError):
        await bus.subscribe("c", MagicMock())
    with pytest.raises(RuntimeError):
        await bus.send_input("p1", "n\n")
    assert bus.publish("c", {}) == 0

    bus.reset()
    assert bus.sent_input == {}
    await bus.subscribe("c", MagicMock())
    assert bus.subscriber_count("c") == 1
