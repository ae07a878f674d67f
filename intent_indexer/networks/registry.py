import logging
from typing import Dict

from intent_indexer.config import IntentsConfig
from intent_indexer.errors import NetworkConfigurationError
from intent_indexer.networks.base import Network
from intent_indexer.networks.evm import EvmNetwork

logger = logging.getLogger(__name__)


def init_networks(config: IntentsConfig) -> Dict[str, Network]:
    # NetworkConfig.type only admits "evm"; other types fail config validation
    networks: Dict[str, Network] = {}

    for network_id, network_config in config.networks.items():
        networks[network_id] = EvmNetwork.from_config(network_config)
        logger.info(
            f"Initialized network id={network_id} type={network_config.type} "
            f"confirmations={network_config.confirmations}"
        )

    return networks


def get_network(networks: Dict[str, Network], network_id: str) -> Network:
    try:
        return networks[network_id]
    except KeyError:
        raise NetworkConfigurationError(
            f"Network {network_id} is not configured. Known: {sorted(networks)}"
        ) from None
