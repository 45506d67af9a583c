"""
Shared ABI types, events and limits for the Guild contracts.
"""

from algopy import arc4


# Denominator for every voting power percentage (basis points)
BASIS_POINTS = 10_000

# Hard limits
MAX_OPTIONS_PER_PROPOSAL = 10
MAX_ACTIVE_PROPOSALS = 50
MAX_VOTE_GAS = 16

# Proposal states
PROPOSAL_NONE = 0
PROPOSAL_SUBMITTED = 1
PROPOSAL_REJECTED = 2
PROPOSAL_EXECUTED = 3
PROPOSAL_FAILED = 4

# ARC-4 signatures used for calls the guild builds itself
SET_CONFIG_SIGNATURE = (
    "set_config((uint64,uint64,uint64,uint64,uint64,uint64,"
    "uint64,uint64,uint64,uint64,uint64))void"
)
IS_CALL_ALLOWED_SIGNATURE = "is_call_allowed(address,address,byte[],uint64)void"

# Length of an ARC-4 method selector
SELECTOR_LENGTH = 4

# Minimum balance raised by each box: flat, plus per byte of key and value
BOX_FLAT_MIN_BALANCE = 2_500
BOX_BYTE_MIN_BALANCE = 400

# Encoded Vote (two uint64)
VOTE_SIZE = 16


class GuildConfig(arc4.Struct):
    """Governance parameters, changed only by an executed proposal."""

    proposal_time: arc4.UInt64
    time_for_execution: arc4.UInt64
    voting_power_for_proposal_execution: arc4.UInt64
    voting_power_for_proposal_creation: arc4.UInt64
    voting_power_for_instant_execution: arc4.UInt64
    vote_gas: arc4.UInt64
    max_gas_price: arc4.UInt64
    max_active_proposals: arc4.UInt64
    lock_time: arc4.UInt64
    min_members_for_proposal_creation: arc4.UInt64
    min_tokens_locked_for_proposal_creation: arc4.UInt64


class LockRecord(arc4.Struct):
    amount: arc4.UInt64
    unlock_timestamp: arc4.UInt64


class ProposalCall(arc4.Struct):
    """
    One action of a proposal option.

    `to` receives `value` microAlgos. When `app_id` is set the application is
    called with `args` (args[0] is the method selector) and `to` must be the
    application address. A zero `to` marks a padding call that is skipped.
    """

    to: arc4.Address
    app_id: arc4.UInt64
    args: arc4.DynamicArray[arc4.DynamicBytes]
    value: arc4.UInt64


class Proposal(arc4.Struct):
    creator: arc4.Address
    start_time: arc4.UInt64
    end_time: arc4.UInt64
    state: arc4.UInt64
    snapshot_id: arc4.UInt64
    title: arc4.String
    content_hash: arc4.String
    total_votes: arc4.DynamicArray[arc4.UInt64]


class Vote(arc4.Struct):
    option: arc4.UInt64
    voting_power: arc4.UInt64


# Events (ARC-28)

class ProposalCreated(arc4.Struct):
    proposal_id: arc4.DynamicBytes


class ProposalStateChanged(arc4.Struct):
    proposal_id: arc4.DynamicBytes
    new_state: arc4.UInt64


class VoteAdded(arc4.Struct):
    proposal_id: arc4.DynamicBytes
    option: arc4.UInt64
    voter: arc4.Address
    voting_power: arc4.UInt64


class TokensLocked(arc4.Struct):
    voter: arc4.Address
    amount: arc4.UInt64


class TokensWithdrawn(arc4.Struct):
    voter: arc4.Address
    amount: arc4.UInt64
