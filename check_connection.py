import argparse
import asyncio
import logging

from dotenv import load_dotenv

from intent_indexer.chain.decoder import OrderEventDecoder
from intent_indexer.chain.rpc import call_with_timeout
from intent_indexer.chain.web3_source import Web3ChainSource
from intent_indexer.config import SubscriptionMode, load_config

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("check_connection")

PROBE_BLOCKS = 100


async def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Check RPC connectivity for the indexer")
    parser.add_argument("config_file", help="Path to the indexer configuration file (YAML)")
    args = parser.parse_args()

    logger.info("Loading Configuration...")
    try:
        config = load_config(args.config_file)
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        return

    logger.info(f"RPC URL: {config.rpc_url}")
    logger.info(f"WS URL: {config.ws_url}")
    logger.info(f"Order Engine: {config.order_engine_address}")
    logger.info(f"Subscription Mode: {config.subscription_mode.value}")

    decoder = OrderEventDecoder.from_abi_path(config.order_engine_abi_path)
    source = Web3ChainSource.from_config(config, decoder.topic0)

    try:
        height = await call_with_timeout(
            source.get_block_number(), config.rpc_timeout, "get_block_number"
        )
        logger.info(f"Current block: {height}")

        from_block = max(0, height - PROBE_BLOCKS + 1)
        logs = await call_with_timeout(
            source.get_logs(from_block, height), config.rpc_timeout, "get_logs"
        )
        logger.info(f"Found {len(logs)} order events in blocks {from_block}-{height}")
        for log in logs:
            try:
                logger.info(f"  {decoder.decode(log).describe()}")
            except Exception as e:
                logger.warning(f"  Undecodable log {log.key}: {e}")

        if config.subscription_mode != SubscriptionMode.POLLING:
            logger.info("Opening live subscription...")
            async with source.subscribe(config.subscription_mode):
                logger.info("Subscription Check Passed!")
    except Exception as e:
        logger.error(f"Connection check failed: {e}")
    finally:
        await source.close()


if __name__ == "__main__":
    asyncio.run(main())
