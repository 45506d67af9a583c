"""
Builders and a guild harness shared by the test suites.
"""

from algopy import Account, Application, UInt64, arc4
from algopy_testing import AlgopyTestContext
from algosdk import abi

from contracts.guild.contract import Guild
from contracts.guild.types import SET_CONFIG_SIGNATURE, GuildConfig, ProposalCall

START_TIME = 1_700_000_000

# Covers the box storage of any single guild operation in these suites
STORAGE_DEPOSIT = 1_000_000

# Minimum balance of a new lock or vote box: 2500 + 400 * (33 + 16)
LOCK_BOX_COST = 22_100
VOTE_BOX_COST = 22_100

# 30s voting, 30s execution window, 50% to execute
DEFAULT_CONFIG = {
    "proposal_time": 30,
    "time_for_execution": 30,
    "voting_power_for_proposal_execution": 5000,
    "voting_power_for_proposal_creation": 100,
    "voting_power_for_instant_execution": 0,
    "vote_gas": 0,
    "max_gas_price": 0,
    "max_active_proposals": 10,
    "lock_time": 60,
    "min_members_for_proposal_creation": 0,
    "min_tokens_locked_for_proposal_creation": 0,
}


def make_config(**overrides: int) -> GuildConfig:
    values = {**DEFAULT_CONFIG, **overrides}
    return GuildConfig(**{field: arc4.UInt64(value) for field, value in values.items()})


def selector(signature: str) -> bytes:
    return abi.Method.from_signature(signature).get_selector()


def payment_call(receiver: Account, amount: int) -> ProposalCall:
    return ProposalCall(
        to=arc4.Address(receiver),
        app_id=arc4.UInt64(0),
        args=arc4.DynamicArray[arc4.DynamicBytes](),
        value=arc4.UInt64(amount),
    )


def padding_call() -> ProposalCall:
    return ProposalCall(
        to=arc4.Address(),
        app_id=arc4.UInt64(0),
        args=arc4.DynamicArray[arc4.DynamicBytes](),
        value=arc4.UInt64(0),
    )


def app_call(app: Application, *args: bytes, value: int = 0) -> ProposalCall:
    return ProposalCall(
        to=arc4.Address(app.address),
        app_id=arc4.UInt64(app.id),
        args=arc4.DynamicArray[arc4.DynamicBytes](*[arc4.DynamicBytes(arg) for arg in args]),
        value=arc4.UInt64(value),
    )


def set_config_call(guild_app: Application, config: GuildConfig) -> ProposalCall:
    return app_call(guild_app, selector(SET_CONFIG_SIGNATURE), config.bytes.value)


class GuildHarness:
    """Creates and initializes a guild in the emulator and drives it per account."""

    def __init__(
        self,
        context: AlgopyTestContext,
        contract_type: type[Guild] = Guild,
        config: GuildConfig | None = None,
    ) -> None:
        self.context = context
        self.now = START_TIME
        self._sync_clock()

        self.token = context.any.asset(total=UInt64(10**12), decimals=UInt64(0))
        self.registry = context.any.application()

        self.contract = contract_type()
        self.contract.create()
        self.app = context.ledger.get_app(self.contract)
        self.contract.initialize(
            self.token,
            self.registry,
            arc4.String("TestGuild"),
            config if config is not None else make_config(),
        )

    def _sync_clock(self) -> None:
        self.context.ledger.patch_global_fields(latest_timestamp=UInt64(self.now))

    def advance(self, seconds: int) -> None:
        self.now += seconds
        self._sync_clock()

    def as_sender(self, account: Account, **fields):
        return self.context.txn.create_group(active_txn_overrides={"sender": account, **fields})

    def deposit(self, account: Account, amount: int = STORAGE_DEPOSIT):
        """Storage payment from `account` to the guild."""
        return self.context.any.txn.payment(
            sender=account,
            receiver=self.app.address,
            amount=UInt64(amount),
        )

    def lock(self, account: Account, amount: int, storage: int = STORAGE_DEPOSIT) -> None:
        xfer = self.context.any.txn.asset_transfer(
            sender=account,
            asset_receiver=self.app.address,
            xfer_asset=self.token,
            asset_amount=UInt64(amount),
        )
        with self.as_sender(account):
            self.contract.lock_tokens(xfer, self.deposit(account, storage))

    def withdraw(self, account: Account, amount: int) -> None:
        with self.as_sender(account):
            self.contract.withdraw_tokens(arc4.UInt64(amount))

    def propose(
        self,
        account: Account,
        options: list[list[ProposalCall]],
        title: str = "Guild Test Proposal",
        storage: int = STORAGE_DEPOSIT,
    ) -> arc4.DynamicBytes:
        calls = arc4.DynamicArray[ProposalCall](*[call for option in options for call in option])
        with self.as_sender(account):
            return self.contract.create_proposal(
                calls,
                arc4.UInt64(len(options)),
                arc4.String(title),
                arc4.String("QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"),
                self.deposit(account, storage),
            )

    def vote(
        self,
        account: Account,
        proposal_id: arc4.DynamicBytes,
        option: int,
        voting_power: int,
        storage: int = STORAGE_DEPOSIT,
        **fields,
    ) -> None:
        with self.as_sender(account, **fields):
            self.contract.set_vote(
                proposal_id,
                arc4.UInt64(option),
                arc4.UInt64(voting_power),
                self.deposit(account, storage),
            )

    def end(self, proposal_id: arc4.DynamicBytes, account: Account | None = None) -> None:
        if account is None:
            self.contract.end_proposal(proposal_id)
        else:
            with self.as_sender(account):
                self.contract.end_proposal(proposal_id)

    def state(self, proposal_id: arc4.DynamicBytes) -> UInt64:
        return self.contract.get_proposal(proposal_id).state.native

    def tally(self, proposal_id: arc4.DynamicBytes) -> list[int]:
        return [votes.native.value for votes in self.contract.get_proposal(proposal_id).total_votes]

    def voting_power(self, account: Account) -> UInt64:
        return self.contract.voting_power_of(arc4.Address(account)).native


