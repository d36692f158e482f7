"""
ABI definitions for the community token and its factory.
"""

from typing import Any, Dict, List, Sequence, Tuple

Param = Tuple[str, str]


def _params(params: Sequence[Param]) -> List[Dict[str, Any]]:
    return [{"name": name, "type": type_} for name, type_ in params]


def _function(
    name: str,
    inputs: Sequence[Param] = (),
    outputs: Sequence[Param] = (),
    view: bool = False,
) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": _params(inputs),
        "outputs": _params(outputs),
        "stateMutability": "view" if view else "nonpayable",
    }


def _signed_call(name: str, subject: Param) -> Dict[str, Any]:
    return _function(
        name,
        [
            ("signer", "address"),
            subject,
            ("amount", "uint256"),
            ("deadline", "uint256"),
            ("v", "uint8"),
            ("r", "bytes32"),
            ("s", "bytes32"),
        ],
    )


TOKEN_ABI: List[Dict[str, Any]] = [
    _function("name", outputs=[("", "string")], view=True),
    _function("symbol", outputs=[("", "string")], view=True),
    _function("decimals", outputs=[("", "uint8")], view=True),
    _function("totalSupply", outputs=[("", "uint256")], view=True),
    _function("balanceOf", [("account", "address")], [("", "uint256")], view=True),
    _function("owner", outputs=[("", "address")], view=True),
    _function("adminSpender", outputs=[("", "address")], view=True),
    _function("mintPaused", outputs=[("", "bool")], view=True),
    _function("adminBurnEnabled", outputs=[("", "bool")], view=True),
    _function("nonces", [("owner", "address")], [("", "uint256")], view=True),
    _function("mintNonces", [("signer", "address")], [("", "uint256")], view=True),
    _function("burnNonces", [("signer", "address")], [("", "uint256")], view=True),
    _function(
        "allowance",
        [("owner", "address"), ("spender", "address")],
        [("", "uint256")],
        view=True,
    ),
    _function(
        "permit",
        [
            ("owner", "address"),
            ("spender", "address"),
            ("value", "uint256"),
            ("deadline", "uint256"),
            ("v", "uint8"),
            ("r", "bytes32"),
            ("s", "bytes32"),
        ],
    ),
    _function(
        "transferFrom",
        [("from", "address"), ("to", "address"), ("value", "uint256")],
        [("", "bool")],
    ),
    _signed_call("mintWithSig", ("to", "address")),
    _signed_call("burnWithSig", ("from", "address")),
]

FACTORY_ABI: List[Dict[str, Any]] = [
    {
        "type": "event",
        "name": "ReteTokenCreated",
        "anonymous": False,
        "inputs": [
            {"name": "token", "type": "address", "indexed": True},
            {"name": "coordinator", "type": "address", "indexed": True},
            {"name": "adminSpender", "type": "address", "indexed": True},
            {"name": "name", "type": "string", "indexed": False},
            {"name": "symbol", "type": "string", "indexed": False},
        ],
    },
    _function(
        "createReteToken",
        [
            ("name_", "string"),
            ("symbol_", "string"),
            ("coordinatorOwner", "address"),
            ("adminSpender_", "address"),
        ],
        [("", "address")],
    ),
    _function("getAllTokens", outputs=[("", "address[]")], view=True),
    _function(
        "getCoordinatorTokens",
        [("coordinator", "address")],
        [("", "address[]")],
        view=True,
    ),
]
