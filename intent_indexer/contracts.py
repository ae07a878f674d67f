import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from web3 import Web3

DEFAULT_ORDER_ENGINE_ABI_PATH = Path(__file__).parent / "abi" / "OrderEngine.json"
ORDER_STATUS_CHANGED = "OrderStatusChanged"

ERC20_ABI: List[Dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

ERC20_TRANSFER_TOPIC = bytes(Web3.keccak(text="Transfer(address,address,uint256)"))


def load_abi(path: Optional[str] = None) -> List[Dict[str, Any]]:
    abi_path = Path(path) if path else DEFAULT_ORDER_ENGINE_ABI_PATH
    with open(abi_path, "r") as f:
        data = json.load(f)

    # Hardhat/Foundry artifacts wrap the ABI
    if isinstance(data, dict) and "abi" in data:
        data = data["abi"]

    if not isinstance(data, list):
        raise ValueError(f"ABI file {abi_path} does not contain an ABI list.")
    return data


def find_event_abi(abi: List[Dict[str, Any]], name: str = ORDER_STATUS_CHANGED) -> Dict[str, Any]:
    for entry in abi:
        if entry.get("type") == "event" and entry.get("name") == name:
            return entry
    raise ValueError(f"Event {name} not found in ABI.")


def event_signature(event_abi: Dict[str, Any]) -> str:
    types = []
    for item in event_abi.get("inputs", []):
        if item["type"].startswith("tuple"):
            raise ValueError(f"Tuple event inputs are not supported: {item['name']}")
        types.append(item["type"])
    return f"{event_abi['name']}({','.join(types)})"


def event_topic(event_abi: Dict[str, Any]) -> bytes:
    return bytes(Web3.keccak(text=event_signature(event_abi)))
