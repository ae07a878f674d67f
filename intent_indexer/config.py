import os
from enum import Enum
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from intent_indexer.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_START_BLOCK_OFFSET,
    EVM_DEFAULT_CONFIRMATIONS,
    EVM_NATIVE_DECIMALS,
    EVM_RETRY_DELAY_SECONDS,
    HEALTH_CHECK_INTERVAL_SECONDS,
    POLLING_INTERVAL_SECONDS,
    RECONNECT_DELAY_SECONDS,
    RPC_TIMEOUT_SECONDS,
    STOP_TIMEOUT_SECONDS,
)


class SubscriptionMode(str, Enum):
    NEW_HEADS = "new_heads"  # block-number push -> incremental scan
    LOGS = "logs"  # decoded-event push -> enqueue immediately
    POLLING = "polling"  # no websocket: poll block height


class NetworkConfig(BaseModel):
    type: Literal["evm"] = "evm"
    rpc_url: str
    rpc_auth_token: Optional[str] = None
    wallet_address: Optional[str] = None
    wallet_private_key: Optional[str] = None
    confirmations: int = Field(default=EVM_DEFAULT_CONFIRMATIONS, ge=0)
    native_decimals: int = Field(default=EVM_NATIVE_DECIMALS, ge=0)
    retry_delay: float = Field(default=EVM_RETRY_DELAY_SECONDS, gt=0)

    @field_validator("rpc_url")
    @classmethod
    def _check_rpc_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"Network rpc_url {value} must be an http(s) URL.")
        return value


class IntentsConfig(BaseModel):
    rpc_url: str
    ws_url: Optional[str] = None
    rpc_auth_token: Optional[str] = None
    order_engine_address: str
    order_engine_abi_path: Optional[str] = None
    oracle_aggregator_address: Optional[str] = None
    oracle_private_key: Optional[str] = None
    solver_private_key: Optional[str] = None

    start_block_offset: int = Field(default=DEFAULT_START_BLOCK_OFFSET, ge=0)
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)
    subscription_mode: Optional[SubscriptionMode] = None
    polling_interval: float = Field(default=POLLING_INTERVAL_SECONDS, gt=0)

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    retry_delay: float = Field(default=DEFAULT_RETRY_DELAY_SECONDS, ge=0)

    rpc_timeout: float = Field(default=RPC_TIMEOUT_SECONDS, gt=0)
    health_check_interval: float = Field(default=HEALTH_CHECK_INTERVAL_SECONDS, gt=0)
    reconnect_delay: float = Field(default=RECONNECT_DELAY_SECONDS, ge=0)
    stop_timeout: float = Field(default=STOP_TIMEOUT_SECONDS, ge=0)

    networks: Dict[str, NetworkConfig] = Field(default_factory=dict)

    @field_validator("rpc_url")
    @classmethod
    def _check_rpc_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"rpc_url {value} must be an http(s) URL.")
        return value

    @field_validator("ws_url")
    @classmethod
    def _check_ws_url(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("ws://", "wss://")):
            raise ValueError(f"ws_url {value} must be a ws(s) URL.")
        return value or None

    @field_validator("order_engine_address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        if not value.startswith("0x") or len(value) != 42:
            raise ValueError(
                f"order_engine_address {value} must be a 0x-prefixed 20 byte address."
            )
        return value

    @model_validator(mode="after")
    def _check_subscription(self) -> "IntentsConfig":
        if self.subscription_mode is None:
            self.subscription_mode = (
                SubscriptionMode.NEW_HEADS if self.ws_url else SubscriptionMode.POLLING
            )
        elif self.subscription_mode != SubscriptionMode.POLLING and not self.ws_url:
            raise ValueError(
                f"Subscription mode '{self.subscription_mode.value}' requires ws_url."
            )
        return self


ENV_OVERRIDES = {
    "INTENTS_RPC_URL": "rpc_url",
    "INTENTS_WS_URL": "ws_url",
    "INTENTS_RPC_AUTH_TOKEN": "rpc_auth_token",
    "INTENTS_ORDER_ENGINE_ADDRESS": "order_engine_address",
    "INTENTS_ORACLE_PRIVATE_KEY": "oracle_private_key",
    "INTENTS_SOLVER_PRIVATE_KEY": "solver_private_key",
}


def apply_env_overrides(data: dict) -> dict:
    """Secrets and endpoints from the environment win over the YAML file."""
    merged = dict(data)
    for env_name, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            merged[field_name] = value
    return merged


def load_config(path: str, use_env: bool = True) -> IntentsConfig:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping.")

    if use_env:
        data = apply_env_overrides(data)

    return IntentsConfig(**data)
