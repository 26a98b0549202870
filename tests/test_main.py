from __future__ import annotations

import asyncio
import logging


def test_lifespan_logs_escaped_callback_errors_and_keeps_running(app, caplog):
    import main

    def broken_callback() -> None:
        raise RuntimeError("stray failure")

    async def scenario() -> bool:
        async with main.lifespan(app):
            loop = asyncio.get_running_loop()
            assert loop.get_exception_handler() is main._log_unhandled
            loop.call_soon(broken_callback)
            await asyncio.sleep(0.01)
            return True

    with caplog.at_level(logging.ERROR, logger="main"):
        assert asyncio.run(scenario()) is True

    records = [record for record in caplog.records if record.name == "main"]
    assert any("Unhandled exception in event loop" in record.getMessage() for record in records)
    assert any(
        record.exc_info and "stray failure" in str(record.exc_info[1]) for record in records
    )
