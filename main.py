import argparse
import asyncio
import logging
import os
import signal

from dotenv import load_dotenv

from intent_indexer.chain.decoder import OrderEventDecoder
from intent_indexer.chain.web3_source import Web3ChainSource
from intent_indexer.config import load_config
from intent_indexer.engine.processors import LoggingEventProcessor
from intent_indexer.engine.watcher import ChainEventWatcher
from intent_indexer.logging_utils import configure_logging

logger = logging.getLogger("main")


async def main():
    load_dotenv()

    # Parse Args
    parser = argparse.ArgumentParser(description="Order engine event indexer")
    parser.add_argument("config_file", nargs="?", help="Path to the indexer configuration file (YAML)")
    parser.add_argument("--config", help="Path to the indexer configuration file (YAML)")
    args = parser.parse_args()

    config_file = args.config or args.config_file

    if not config_file:
        parser.print_help()
        return

    if not os.path.exists(config_file):
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Config file not found at {config_file}")
        return

    try:
        config = load_config(config_file)
    except Exception as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Failed to load config: {e}")
        return

    run_id = configure_logging(mode=config.subscription_mode.value)
    logger.info(
        f"Loaded config run_id={run_id} order_engine={config.order_engine_address} "
        f"mode={config.subscription_mode.value}"
    )

    decoder = OrderEventDecoder.from_abi_path(config.order_engine_abi_path)
    source = Web3ChainSource.from_config(config, decoder.topic0)

    watcher = ChainEventWatcher(config, source, decoder)
    watcher.add_processor(LoggingEventProcessor())

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            pass

    # The initial catch-up can be long; a signal must be able to cut it short
    start_task = asyncio.create_task(watcher.start(), name="indexer-start")
    shutdown_task = asyncio.create_task(shutdown_event.wait(), name="indexer-shutdown")
    try:
        await asyncio.wait({start_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
        if start_task.done() and not start_task.cancelled() and start_task.exception() is None:
            await shutdown_task
    except asyncio.CancelledError:
        logger.info("Indexer run cancelled.")
    finally:
        if watcher.running:
            await watcher.stop()
        shutdown_task.cancel()
        await asyncio.gather(start_task, shutdown_task, return_exceptions=True)
        if start_task.done() and not start_task.cancelled() and start_task.exception():
            logger.error(f"Indexer failed to start: {start_task.exception()}")
        await source.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Indexer stopped by user.")


if __name__ == "__main__":
    run()
