"""
Central configuration constants for intent-indexer.

This module contains the tunable parameters and magic numbers used by the
watcher, the delivery loop and the delayed retry queue. Values here are the
defaults; most of them can be overridden per deployment in the YAML config.
"""

# =============================================================================
# WATCHER CONSTANTS
# =============================================================================

# Historical scans
DEFAULT_START_BLOCK_OFFSET = 1000  # Blocks to rescan on cold start
DEFAULT_CHUNK_SIZE = 500  # Blocks per eth_getLogs query (upstream limits)

# RPC & liveness
RPC_TIMEOUT_SECONDS = 15.0
HEALTH_CHECK_INTERVAL_SECONDS = 30.0
RECONNECT_DELAY_SECONDS = 5.0
POLLING_INTERVAL_SECONDS = 5.0

# Shutdown
STOP_TIMEOUT_SECONDS = 30.0
STOP_DRAIN_POLL_SECONDS = 0.1

# Duplicate guard for logs already enqueued
RECENT_LOG_KEYS_MAX_SIZE = 10_000


# =============================================================================
# DELIVERY CONSTANTS
# =============================================================================

DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_DELAY_SECONDS = 1.0


# =============================================================================
# DELAYED RETRY QUEUE CONSTANTS
# =============================================================================

DELAYED_QUEUE_TICK_SECONDS = 1.0
DELAYED_QUEUE_STOP_GRACE_SECONDS = 3.0
BACKOFF_BASE_MS = 3_000
BACKOFF_MAX_MS = 60_000


# =============================================================================
# NETWORK ADAPTER CONSTANTS
# =============================================================================

NATIVE_TOKEN = "0x0"
EVM_DEFAULT_CONFIRMATIONS = 6
EVM_NATIVE_DECIMALS = 18
EVM_RETRY_DELAY_SECONDS = 5.0
DECIMALS_CACHE_TTL_SECONDS = 60 * 60  # 1 hour
DECIMALS_CACHE_MAX_SIZE = 1_000
