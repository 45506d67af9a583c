"""
Deployment Script for the Algorand Guild

Deploys the PermissionRegistry and a Guild (or one of its variants), funds the
guild account and initializes it with a configuration read from the
environment.

Build the TEAL first:
    puyapy contracts --out-dir build

Run with: python scripts/deploy.py

Environment variables:
- ALGOD_SERVER: Algorand node URL
- ALGOD_TOKEN: Algorand node token
- DEPLOYER_MNEMONIC: 25-word mnemonic for deployer account
- NETWORK: localnet | testnet | mainnet
- BUILD_DIR: Directory holding the compiled TEAL (default: build)
- GUILD_CONTRACT: Guild | SnapshotGuild | GuardedGuild (default: Guild)
- GUILD_TOKEN_ID: Asset id of the governance token (required)
- GUILD_NAME: Guild name
- GUILD_FUNDING: microAlgos sent to the guild account (default: 1 ALGO)
- GUILD_PROPOSAL_TIME, GUILD_TIME_FOR_EXECUTION, ...: see GUILD_CONFIG_FIELDS
"""

import base64
import json
import os
from pathlib import Path

from dotenv import load_dotenv
from algosdk import abi, account, mnemonic, transaction
from algosdk.atomic_transaction_composer import (
    AccountTransactionSigner,
    AtomicTransactionComposer,
)
from algosdk.logic import get_application_address
from algosdk.v2client import algod

# Load environment variables
load_dotenv()

BASIS_POINTS = 10_000
MAX_VOTE_GAS = 16
MAX_ACTIVE_PROPOSALS = 50

# GuildConfig fields in ABI order: (field, environment variable, default)
GUILD_CONFIG_FIELDS = [
    ("proposal_time", "GUILD_PROPOSAL_TIME", 3 * 24 * 60 * 60),
    ("time_for_execution", "GUILD_TIME_FOR_EXECUTION", 7 * 24 * 60 * 60),
    ("voting_power_for_proposal_execution", "GUILD_VOTING_POWER_FOR_EXECUTION", 5000),
    ("voting_power_for_proposal_creation", "GUILD_VOTING_POWER_FOR_CREATION", 100),
    ("voting_power_for_instant_execution", "GUILD_VOTING_POWER_FOR_INSTANT_EXECUTION", 0),
    ("vote_gas", "GUILD_VOTE_GAS", 0),
    ("max_gas_price", "GUILD_MAX_GAS_PRICE", 0),
    ("max_active_proposals", "GUILD_MAX_ACTIVE_PROPOSALS", 10),
    ("lock_time", "GUILD_LOCK_TIME", 7 * 24 * 60 * 60),
    ("min_members_for_proposal_creation", "GUILD_MIN_MEMBERS_FOR_CREATION", 0),
    ("min_tokens_locked_for_proposal_creation", "GUILD_MIN_TOKENS_LOCKED_FOR_CREATION", 0),
]

GUILD_CONFIG_TYPE = "(" + ",".join(["uint64"] * len(GUILD_CONFIG_FIELDS)) + ")"
INITIALIZE_SIGNATURE = f"initialize(asset,application,string,{GUILD_CONFIG_TYPE})void"
CREATE_SIGNATURE = "create()void"

# Global state schema per contract: (uints, byte slices)
GLOBAL_SCHEMAS = {
    "PermissionRegistry": (0, 1),
    "Guild": (7, 3),
    "SnapshotGuild": (8, 3),
    "GuardedGuild": (8, 4),
}


def load_guild_config() -> dict[str, int]:
    """
    Read the guild configuration from the environment.

    Missing variables fall back to the defaults in GUILD_CONFIG_FIELDS.

    Returns:
        Mapping of GuildConfig field name to value, in ABI order

    Raises:
        ValueError: If a value is not a non-negative integer or the
            configuration would be rejected by the contract
    """
    config = {}
    for field, env_var, default in GUILD_CONFIG_FIELDS:
        raw = os.getenv(env_var)
        if raw is None or raw.strip() == "":
            config[field] = default
            continue
        try:
            value = int(raw)
        except ValueError:
            raise ValueError(f"{env_var} must be an integer, got {raw!r}") from None
        if value < 0:
            raise ValueError(f"{env_var} must not be negative")
        config[field] = value

    if config["proposal_time"] == 0:
        raise ValueError("proposal_time has to be more than 0")
    if config["lock_time"] < config["proposal_time"]:
        raise ValueError("lock_time has to be higher or equal to proposal_time")
    if config["voting_power_for_proposal_execution"] == 0:
        raise ValueError("voting_power_for_proposal_execution has to be more than 0")
    for field in (
        "voting_power_for_proposal_execution",
        "voting_power_for_proposal_creation",
        "voting_power_for_instant_execution",
    ):
        if config[field] > BASIS_POINTS:
            raise ValueError(f"{field} cannot exceed {BASIS_POINTS} basis points")
    if config["vote_gas"] > MAX_VOTE_GAS:
        raise ValueError(f"vote_gas has to be equal or lower than {MAX_VOTE_GAS}")
    if not 0 < config["max_active_proposals"] <= MAX_ACTIVE_PROPOSALS:
        raise ValueError(f"max_active_proposals has to be between 1 and {MAX_ACTIVE_PROPOSALS}")

    return config


def get_algod_client() -> algod.AlgodClient:
    """Create Algorand client from environment variables."""
    server = os.getenv("ALGOD_SERVER", "http://localhost:4001")
    token = os.getenv("ALGOD_TOKEN", "a" * 64)

    return algod.AlgodClient(token, server)


def get_deployer_account() -> tuple[str, str]:
    """Get deployer account from mnemonic."""
    mnemonic_phrase = os.getenv("DEPLOYER_MNEMONIC")
    if not mnemonic_phrase:
        raise ValueError("DEPLOYER_MNEMONIC not set in environment")

    private_key = mnemonic.to_private_key(mnemonic_phrase)
    address = account.address_from_private_key(private_key)

    return private_key, address


def compile_contract(client: algod.AlgodClient, teal_path: Path) -> bytes:
    """Compile TEAL source code with the node."""
    compile_response = client.compile(teal_path.read_text())
    return base64.b64decode(compile_response["result"])


def deploy_contract(
    client: algod.AlgodClient,
    private_key: str,
    sender: str,
    build_dir: Path,
    contract_name: str,
) -> int:
    """Create an application from compiled TEAL and return its id."""
    approval_program = compile_contract(client, build_dir / f"{contract_name}.approval.teal")
    clear_program = compile_contract(client, build_dir / f"{contract_name}.clear.teal")
    global_ints, global_bytes = GLOBAL_SCHEMAS[contract_name]

    params = client.suggested_params()
    txn = transaction.ApplicationCreateTxn(
        sender=sender,
        sp=params,
        on_complete=transaction.OnComplete.NoOpOC,
        approval_program=approval_program,
        clear_program=clear_program,
        global_schema=transaction.StateSchema(global_ints, global_bytes),
        local_schema=transaction.StateSchema(0, 0),
        app_args=[abi.Method.from_signature(CREATE_SIGNATURE).get_selector()],
    )

    signed_txn = txn.sign(private_key)
    tx_id = client.send_transaction(signed_txn)

    result = transaction.wait_for_confirmation(client, tx_id, 4)
    return result["application-index"]


def fund_account(
    client: algod.AlgodClient,
    private_key: str,
    sender: str,
    receiver: str,
    amount: int,
) -> str:
    """Send microAlgos and wait for confirmation."""
    params = client.suggested_params()
    txn = transaction.PaymentTxn(sender=sender, sp=params, receiver=receiver, amt=amount)
    tx_id = client.send_transaction(txn.sign(private_key))
    transaction.wait_for_confirmation(client, tx_id, 4)
    return tx_id


def initialize_guild(
    client: algod.AlgodClient,
    private_key: str,
    sender: str,
    guild_app_id: int,
    token_id: int,
    registry_app_id: int,
    name: str,
    config: dict[str, int],
) -> str:
    """Call initialize() on the guild. The fee covers the token opt-in."""
    params = client.suggested_params()
    params.flat_fee = True
    params.fee = params.min_fee * 2

    composer = AtomicTransactionComposer()
    composer.add_method_call(
        app_id=guild_app_id,
        method=abi.Method.from_signature(INITIALIZE_SIGNATURE),
        sender=sender,
        sp=params,
        signer=AccountTransactionSigner(private_key),
        method_args=[token_id, registry_app_id, name, list(config.values())],
    )
    result = composer.execute(client, 4)
    return result.tx_ids[0]


def main():
    """Main deployment function."""
    print("=" * 60)
    print("Algorand Guild - Deployment")
    print("=" * 60)

    network = os.getenv("NETWORK", "localnet")
    build_dir = Path(os.getenv("BUILD_DIR", "build"))
    contract_name = os.getenv("GUILD_CONTRACT", "Guild")
    guild_name = os.getenv("GUILD_NAME", "Guild")
    funding = int(os.getenv("GUILD_FUNDING", "1000000"))

    token_id = os.getenv("GUILD_TOKEN_ID")
    if not token_id:
        raise ValueError("GUILD_TOKEN_ID not set in environment")
    if contract_name not in ("Guild", "SnapshotGuild", "GuardedGuild"):
        raise ValueError(f"Unknown GUILD_CONTRACT {contract_name!r}")

    config = load_guild_config()

    print(f"\nNetwork: {network}")
    client = get_algod_client()
    private_key, deployer = get_deployer_account()
    print(f"Deployer: {deployer}")

    print("\n" + "-" * 60)
    print("Guild Configuration")
    print("-" * 60)
    for field, value in config.items():
        print(f"   {field}: {value}")

    print("\n" + "-" * 60)
    print("Contract Deployment")
    print("-" * 60)

    print("\n📄 PermissionRegistry")
    registry_app_id = deploy_contract(client, private_key, deployer, build_dir, "PermissionRegistry")
    print(f"   ✅ Deployed: App ID {registry_app_id}")

    print(f"\n📄 {contract_name}")
    guild_app_id = deploy_contract(client, private_key, deployer, build_dir, contract_name)
    guild_address = get_application_address(guild_app_id)
    print(f"   ✅ Deployed: App ID {guild_app_id}")
    print(f"   Address: {guild_address}")

    fund_account(client, private_key, deployer, guild_address, funding)
    print(f"   💰 Funded with {funding / 1_000_000:.6f} ALGO")

    tx_id = initialize_guild(
        client, private_key, deployer, guild_app_id, int(token_id), registry_app_id, guild_name, config
    )
    print(f"   ✅ Initialized: {tx_id}")

    deployment_info = {
        "network": network,
        "deployer": deployer,
        "permission_registry": registry_app_id,
        "guild": {"contract": contract_name, "app_id": guild_app_id, "address": guild_address},
        "config": config,
    }
    output = Path(f"deployment_{network}.json")
    output.write_text(json.dumps(deployment_info, indent=2))

    print("\n" + "=" * 60)
    print(f"💾 Deployment info saved to: {output}")
    print("=" * 60)


if __name__ == "__main__":
    main()
