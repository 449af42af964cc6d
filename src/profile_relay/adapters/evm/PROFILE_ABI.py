"""
Account (LSP-0) + Key Manager (LSP-6 / LSP-25) Smart Contract ABI Module

This module provides simplified ABI definitions for the calls the relay
engine makes: resolving an account's Key Manager, reading permissions and
nonces, executing relay calls, and encoding account-level calls.

Usage:
    from PROFILE_ABI import (
        get_owner_abi,
        get_data_abi,
        get_nonce_abi,
        get_execute_relay_call_abi,
    )

    # Resolve the Key Manager of an account
    owner_abi = get_owner_abi()

    # Read the next relay-call nonce
    nonce_abi = get_nonce_abi()
"""

from typing import Dict, Any, List


def get_owner_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the account's ``owner()``; the owner of an account is its
    Key Manager.

    Example:
        contract = web3.eth.contract(address=account, abi=get_owner_abi())
        key_manager = await contract.functions.owner().call()
    """
    return [
        {
            "name": "owner",
            "type": "function",
            "stateMutability": "view",
            "inputs": [],
            "outputs": [{"name": "", "type": "address"}],
        }
    ]


def get_data_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the account's ERC725Y ``getData(bytes32)``.

    Example:
        contract = web3.eth.contract(address=account, abi=get_data_abi())
        raw = await contract.functions.getData(data_key).call()
    """
    return [
        {
            "name": "getData",
            "type": "function",
            "stateMutability": "view",
            "inputs": [{"name": "dataKey", "type": "bytes32"}],
            "outputs": [{"name": "dataValue", "type": "bytes"}],
        }
    ]


def get_nonce_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the Key Manager's ``getNonce(address, uint128)``.

    Example:
        contract = web3.eth.contract(address=key_manager, abi=get_nonce_abi())
        nonce = await contract.functions.getNonce(controller, channel).call()
    """
    return [
        {
            "name": "getNonce",
            "type": "function",
            "stateMutability": "view",
            "inputs": [
                {"name": "from", "type": "address"},
                {"name": "channelId", "type": "uint128"},
            ],
            "outputs": [{"name": "", "type": "uint256"}],
        }
    ]


def get_execute_relay_call_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the Key Manager's
    ``executeRelayCall(bytes signature, uint256 nonce, uint256 validityTimestamps, bytes payload)``.

    Example:
        contract = web3.eth.contract(address=key_manager, abi=get_execute_relay_call_abi())
        tx_fn = contract.functions.executeRelayCall(sig, nonce, validity, payload)
    """
    return [
        {
            "name": "executeRelayCall",
            "type": "function",
            "stateMutability": "payable",
            "inputs": [
                {"name": "signature", "type": "bytes"},
                {"name": "nonce", "type": "uint256"},
                {"name": "validityTimestamps", "type": "uint256"},
                {"name": "payload", "type": "bytes"},
            ],
            "outputs": [{"name": "", "type": "bytes"}],
        }
    ]


def get_key_manager_abi() -> List[Dict[str, Any]]:
    """Combined Key Manager ABI (nonce reads and relay execution)."""
    return get_nonce_abi() + get_execute_relay_call_abi()


def get_account_abi() -> List[Dict[str, Any]]:
    """Combined account ABI (owner and data reads)."""
    return get_owner_abi() + get_data_abi()


#: Custom errors the Key Manager reverts with, by Solidity signature.
KEY_MANAGER_ERRORS: Dict[str, str] = {
    "NotAuthorised": "NotAuthorised(address,string)",
    "NoPermissionsSet": "NoPermissionsSet(address)",
    "InvalidRelayNonce": "InvalidRelayNonce(address,uint256,bytes)",
    "RelayCallExpired": "RelayCallExpired()",
    "RelayCallBeforeStartTime": "RelayCallBeforeStartTime()",
    "LSP6BatchExcessiveValueSent": "LSP6BatchExcessiveValueSent(uint256,uint256)",
}
