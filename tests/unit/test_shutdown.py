import asyncio
import signal

import pytest

from lexindex.ingestion.shutdown import ShutdownController


@pytest.mark.asyncio
async def test_first_signal_sets_flag_only():
    controller = ShutdownController(timeout=5.0)
    controller.install()
    try:
        assert not controller.requested
        controller.request(signal.SIGINT)
        assert controller.requested
        # Second signal is a no-op
        controller.request(signal.SIGINT)
        assert controller.requested
    finally:
        controller.uninstall()


@pytest.mark.asyncio
async def test_task_cancelled_after_grace_period():
    controller = ShutdownController(timeout=0.01)

    async def stuck():
        controller.install()
        controller.request(signal.SIGTERM)
        await asyncio.sleep(10)

    task = asyncio.create_task(stuck())
    with pytest.raises(asyncio.CancelledError):
        await task
    controller.uninstall()
