import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from loguru import logger

from opencode_state.app_config import parse_app_config
from opencode_state.bootstrap import bootstrap_runtime, shutdown_runtime
from opencode_state.delta_dedup import SequenceDeltaDedup


class BootstrapTests(unittest.TestCase):
    def tearDown(self) -> None:
        logger.remove()

    def test_wires_store_client_and_stream(self) -> None:
        app = parse_app_config(
            {"ServerUrl": "http://127.0.0.1:1", "DeltaDedup": "sequence", "PendingBufferLimit": 8}
        )

        async def scenario():
            runtime = await bootstrap_runtime(app, start_stream=False)
            try:
                return runtime, runtime.client.http.is_closed
            finally:
                await shutdown_runtime(runtime)

        runtime, closed_before = asyncio.run(scenario())

        self.assertFalse(closed_before)
        self.assertTrue(runtime.client.http.is_closed)
        self.assertIsInstance(runtime.store._dedup, SequenceDeltaDedup)
        self.assertEqual(["console (stderr, INFO)"], runtime.log_descriptions)
        self.assertFalse(runtime.store.connected)

    def test_unknown_dedup_strategy_raises(self) -> None:
        app = parse_app_config({"DeltaDedup": "guess"})
        with self.assertRaises(ValueError):
            asyncio.run(bootstrap_runtime(app, start_stream=False))

    def test_shutdown_closes_client_when_stream_stop_fails(self) -> None:
        app = parse_app_config({"ServerUrl": "http://127.0.0.1:1"})

        async def scenario():
            runtime = await bootstrap_runtime(app, start_stream=False)
            with patch.object(runtime.consumer, "stop", AsyncMock(side_effect=RuntimeError("boom"))):
                with self.assertRaises(RuntimeError):
                    await shutdown_runtime(runtime)
            return runtime

        runtime = asyncio.run(scenario())

        self.assertTrue(runtime.client.http.is_closed)


if __name__ == "__main__":
    unittest.main()
