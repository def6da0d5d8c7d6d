from decimal import Decimal

import base58
import pytest

from src.txgraph.nodes.bitcoin.node_utils import btc_to_satoshi, derive_addresses, pubkey_to_address, \
    script_to_p2pkh_address

GENESIS_PUBKEY = (
    "04678afdb0fe5548271967f1a67130b7105cd6a828e03909a67962e0ea1f61deb6"
    "49f6bc3f4cef38c4f35504e51ec112de5c384df7ba0b8d578a4c702b6bf11d5f"
)
GENESIS_ADDRESS = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
GENESIS_PUBKEY_HASH = bytes.fromhex("62e907b15cbf27d5425399ebf6f0fb50ebb88f18")


def test_pubkey_to_address():
    assert pubkey_to_address(GENESIS_PUBKEY) == GENESIS_ADDRESS


def test_pubkey_to_address_rejects_non_hex():
    with pytest.raises(ValueError):
        pubkey_to_address("zz" + GENESIS_PUBKEY[2:])


def test_script_to_p2pkh_address():
    script = "76a91462e907b15cbf27d5425399ebf6f0fb50ebb88f1888ac"
    assert script_to_p2pkh_address(script) == GENESIS_ADDRESS


def test_derive_addresses_prefers_reported_address():
    assert derive_addresses({"type": "witness_v0_keyhash", "address": "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"}) == ["bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"]
    assert derive_addresses({"type": "multisig", "addresses": ["1A", "1B", "1A"]}) == ["1A", "1B"]


def test_derive_addresses_from_pay_to_pubkey_script():
    script_pub_key = {"type": "pubkey", "asm": f"{GENESIS_PUBKEY} OP_CHECKSIG", "hex": ""}
    assert derive_addresses(script_pub_key) == [GENESIS_ADDRESS]


def test_derive_addresses_nulldata_pays_nobody():
    assert derive_addresses({"type": "nulldata", "asm": "OP_RETURN 636861726c6579", "hex": "6a07636861726c6579"}) == []


def test_derive_addresses_unparseable_script_pays_nobody():
    assert derive_addresses({"type": "nonstandard", "asm": "OP_NOP", "hex": "61"}) == []


@pytest.mark.parametrize("value, expected", [
    (Decimal("50"), 5000000000),
    (Decimal("0.00000001"), 1),
    (0.1, 10000000),
])
def test_btc_to_satoshi(value, expected):
    assert btc_to_satoshi(value) == expected


def test_derive_addresses_for_testnet():
    pay_to_pubkey = {"type": "pubkey", "asm": f"{GENESIS_PUBKEY} OP_CHECKSIG", "hex": ""}
    pay_to_pubkey_hash = {"type": "pubkeyhash", "asm": "", "hex": "76a91462e907b15cbf27d5425399ebf6f0fb50ebb88f1888ac"}
    pay_to_script_hash = {"type": "scripthash", "asm": "", "hex": "a914748284390f9e263a4b766a75d0633c50426eb87587"}

    [p2pk] = derive_addresses(pay_to_pubkey, mainnet=False)
    [p2pkh] = derive_addresses(pay_to_pubkey_hash, mainnet=False)
    [p2sh] = derive_addresses(pay_to_script_hash, mainnet=False)

    assert p2pk == p2pkh
    assert p2pk[0] in "mn"
    assert base58.b58decode_check(p2pk) == b"\x6f" + GENESIS_PUBKEY_HASH
    assert p2sh.startswith("2")
    assert base58.b58decode_check(p2sh) == b"\xc4" + bytes.fromhex("748284390f9e263a4b766a75d0633c50426eb875")


def test_derive_addresses_for_mainnet_script_hash():
    [p2sh] = derive_addresses({"type": "scripthash", "asm": "", "hex": "a914748284390f9e263a4b766a75d0633c50426eb87587"})

    assert p2sh.startswith("3")
