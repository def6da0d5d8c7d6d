import binascii
from decimal import Decimal, getcontext
from typing import List

import base58
from Crypto.Hash import SHA256, RIPEMD160
from loguru import logger

getcontext().prec = 28
SATOSHI = Decimal("100000000")

MAINNET_P2PKH_VERSION = b"\x00"
TESTNET_P2PKH_VERSION = b"\x6f"
MAINNET_P2SH_VERSION = b"\x05"
TESTNET_P2SH_VERSION = b"\xc4"


def btc_to_satoshi(value) -> int:
    return int(Decimal(str(value)) * SATOSHI)


def _checksum(payload: bytes) -> bytes:
    return SHA256.new(SHA256.new(payload).digest()).digest()[:4]


def _hash160(data: bytes) -> bytes:
    return RIPEMD160.new(SHA256.new(data).digest()).digest()


def _encode(version_byte: bytes, payload: bytes) -> str:
    versioned_payload = version_byte + payload
    return base58.b58encode(versioned_payload + _checksum(versioned_payload)).decode()


def pubkey_to_address(pubkey: str, mainnet=True) -> str:
    if not all(c in '0123456789abcdefABCDEF' for c in pubkey):
        raise ValueError(f"Invalid pubkey: {pubkey}. Contains non-hexadecimal characters.")
    version_byte = MAINNET_P2PKH_VERSION if mainnet else TESTNET_P2PKH_VERSION
    return _encode(version_byte, _hash160(bytes.fromhex(pubkey)))


def script_to_p2sh_address(script: str, mainnet=True) -> str:
    version_byte = MAINNET_P2SH_VERSION if mainnet else TESTNET_P2SH_VERSION
    return _encode(version_byte, _hash160(binascii.unhexlify(script)))


def script_to_p2pkh_address(script: str, mainnet=True) -> str:
    # OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG
    if not script.startswith("76a914"):
        raise ValueError(f"Script does not start with P2PKH pattern: {script[:10]}...")

    pubkey_hash = script[6:46]
    if len(pubkey_hash) != 40:
        raise ValueError(f"Invalid pubkey hash length: {pubkey_hash}")

    version_byte = MAINNET_P2PKH_VERSION if mainnet else TESTNET_P2PKH_VERSION
    return _encode(version_byte, binascii.unhexlify(pubkey_hash))


def derive_addresses(script_pub_key: dict, mainnet=True) -> List[str]:
    """
    Addresses paid by an output.

    Nodes from 22.0 on report a single ``address``; older nodes report ``addresses``.
    When neither is present the address is derived from the script itself, encoded for
    mainnet or testnet as ``mainnet`` says. Outputs that pay nobody (``nulldata``,
    unparseable ``nonstandard`` scripts) have none.
    """
    if script_pub_key.get("address"):
        return [script_pub_key["address"]]

    if script_pub_key.get("addresses"):
        return list(dict.fromkeys(script_pub_key["addresses"]))

    script_type = script_pub_key.get("type", "")
    asm = script_pub_key.get("asm", "")
    hex_script = script_pub_key.get("hex", "")

    if script_type == "nulldata":
        return []

    try:
        if script_type == "pubkey":
            return [pubkey_to_address(asm.split()[0], mainnet)]

        if script_type == "pubkeyhash" or hex_script.startswith("76a914"):
            return [script_to_p2pkh_address(hex_script, mainnet)]

        if script_type == "scripthash" or (hex_script.startswith("a914") and len(hex_script) == 46):
            version_byte = MAINNET_P2SH_VERSION if mainnet else TESTNET_P2SH_VERSION
            return [_encode(version_byte, binascii.unhexlify(hex_script[4:44]))]

        if script_type == "multisig" or "OP_CHECKMULTISIG" in asm:
            return [script_to_p2sh_address(hex_script, mainnet)]

        asm_parts = asm.split()
        if len(asm_parts) == 2 and asm_parts[1] == "OP_CHECKSIG":
            return [pubkey_to_address(asm_parts[0], mainnet)]
    except (ValueError, binascii.Error) as e:
        logger.warning("Unable to derive address", script_type=script_type, asm=asm[:100], error=str(e))
        return []

    logger.debug("Output script pays no address", script_type=script_type, asm=asm[:100])
    return []
