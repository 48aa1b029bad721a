"""ABI subset of the ConfidentialSentimentAnalysis marketplace contract."""

from __future__ import annotations

from typing import Any


def _fn(
    name: str,
    inputs: list[tuple[str, str]],
    outputs: list[tuple[str, str]],
    mutability: str = "view",
) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
        "stateMutability": mutability,
    }


def _event(name: str, inputs: list[tuple[str, str, bool]]) -> dict[str, Any]:
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [{"name": n, "type": t, "indexed": i} for n, t, i in inputs],
    }


SENTIMENT_RESULT_EVENT = "SentimentResult"
WORKER_REGISTERED_EVENT = "ROFLWorkerRegistered"

MARKETPLACE_ABI: list[dict[str, Any]] = [
    _fn("getAgentCount", [], [("", "uint256")]),
    _fn(
        "agents",
        [("", "uint256")],
        [("owner", "address"), ("modelUrl", "string"), ("price", "uint256"), ("active", "bool")],
    ),
    _fn(
        "getPlatformStats",
        [],
        [
            ("totalAgents", "uint256"),
            ("totalRequests", "uint256"),
            ("totalFees", "uint256"),
            ("feePercent", "uint256"),
            ("roflActive", "bool"),
        ],
    ),
    _fn("expectedROFLAppId", [], [("", "bytes32")]),
    _fn("roflWorkerAddress", [], [("", "address")]),
    _fn("roflEnabled", [], [("", "bool")]),
    _fn(
        "registerAgent",
        [("modelUrl", "string"), ("price", "uint256")],
        [],
        mutability="nonpayable",
    ),
    _fn(
        "requestSentiment",
        [("agentId", "uint256"), ("text", "string")],
        [],
        mutability="payable",
    ),
    _event(
        SENTIMENT_RESULT_EVENT,
        [
            ("requestId", "uint256", True),
            ("sentiment", "string", False),
            ("confidence", "uint256", False),
            ("worker", "address", False),
        ],
    ),
    _event(
        WORKER_REGISTERED_EVENT,
        [("appId", "bytes32", False), ("workerAddress", "address", False)],
    ),
]
