"""
Guild Governance Smart Contract

Token-weighted, multi-option governance for a DAO. Members lock the guild
token to obtain voting power, create proposals made of one or more candidate
call bundles, vote on them, and execute the winning bundle through a
permission registry.

Features:
- Token lock vault with a timelock that follows open votes
- Multi-option proposals with an implicit "no action" option at index 0
- Monotonic voting: a vote can grow but never move to another option
- Tie-break rejection and execution threshold
- Early execution once an option reaches the instant threshold
- Signed (relayed) votes with replay protection
- Vote fee refunds paid from the guild balance, only for votes adding power
- Box storage paid by the caller through a grouped payment
- Self-amendment: configuration changes only through executed proposals

Algorand Primitives Used:
- AVM Application (smart contract)
- Grouped asset transfers (token deposits)
- Inner Transactions (withdrawals, refunds, permission checks, proposal calls)
- Boxes (lock records, proposals, votes)
- ARC-28 events
"""

from algopy import (
    ARC4Contract,
    Account,
    Application,
    Asset,
    Box,
    BoxMap,
    Bytes,
    Global,
    GlobalState,
    OpUpFeeSource,
    String,
    TransactionType,
    Txn,
    UInt64,
    arc4,
    ensure_budget,
    gtxn,
    itxn,
    op,
    subroutine,
    urange,
)

from contracts.guild.storage import box_storage_cost
from contracts.guild.tally import voting_power_fraction, winning_option
from contracts.guild.types import (
    BASIS_POINTS,
    IS_CALL_ALLOWED_SIGNATURE,
    MAX_ACTIVE_PROPOSALS,
    MAX_OPTIONS_PER_PROPOSAL,
    MAX_VOTE_GAS,
    PROPOSAL_EXECUTED,
    PROPOSAL_FAILED,
    PROPOSAL_REJECTED,
    PROPOSAL_SUBMITTED,
    SELECTOR_LENGTH,
    SET_CONFIG_SIGNATURE,
    VOTE_SIZE,
    GuildConfig,
    LockRecord,
    Proposal,
    ProposalCall,
    ProposalCreated,
    ProposalStateChanged,
    TokensLocked,
    TokensWithdrawn,
    Vote,
    VoteAdded,
)


class Guild(ARC4Contract):
    """
    Token-locking governance guild.

    State Schema:
    - Global State:
        - creator: Account allowed to initialize the guild
        - initialized: Whether initialize() has run
        - name: Guild name
        - token: Asset locked for voting power
        - permission_registry: Application consulted before every proposal call
        - config: GuildConfig
        - total_locked: Tokens held in the vault
        - total_members: Accounts with a nonzero lock
        - total_proposals: Proposals created so far
        - executing_proposal: Raised while a winning option runs

    - Boxes:
        - l{account}: LockRecord
        - p{proposal_id}: Proposal
        - c{proposal_id}: Calls of every option, flattened
        - i{index}: Proposal id by creation index
        - v{sha256(proposal_id, voter)}: Vote
        - s{vote_hash}: Consumed signed vote hashes
        - active: Indexes of proposals that may still be active
    """

    # Global State
    creator: GlobalState[Account]
    initialized: GlobalState[bool]
    name: GlobalState[String]
    token: GlobalState[Asset]
    permission_registry: GlobalState[Application]
    config: GlobalState[GuildConfig]
    total_locked: GlobalState[UInt64]
    total_members: GlobalState[UInt64]
    total_proposals: GlobalState[UInt64]
    executing_proposal: GlobalState[bool]

    def __init__(self) -> None:
        self.locks = BoxMap(Account, LockRecord, key_prefix=b"l")
        self.proposals = BoxMap(Bytes, Proposal, key_prefix=b"p")
        self.proposal_calls = BoxMap(Bytes, arc4.DynamicArray[ProposalCall], key_prefix=b"c")
        self.proposal_ids = BoxMap(UInt64, Bytes, key_prefix=b"i")
        self.votes = BoxMap(Bytes, Vote, key_prefix=b"v")
        self.signed_votes = BoxMap(Bytes, arc4.Bool, key_prefix=b"s")
        self.active_proposals = Box(arc4.DynamicArray[arc4.UInt64], key=b"active")

    # ------------------------------------------------------------------
    # Lifecycle and configuration
    # ------------------------------------------------------------------

    @arc4.abimethod(create="require")
    def create(self) -> None:
        """Create the guild. It stays inert until initialize() is called."""
        self.creator.value = Txn.sender
        self.initialized.value = False
        self.name.value = String()
        self.total_locked.value = UInt64(0)
        self.total_members.value = UInt64(0)
        self.total_proposals.value = UInt64(0)
        self.executing_proposal.value = False

    @arc4.abimethod
    def initialize(
        self,
        token: Asset,
        permission_registry: Application,
        name: arc4.String,
        config: GuildConfig,
    ) -> None:
        """
        Initialize the guild once. The app account must already hold enough
        microAlgos for its minimum balance and the token opt-in.

        Args:
            token: Asset locked to obtain voting power
            permission_registry: Registry consulted before each proposal call
            name: Guild name
            config: Initial governance parameters
        """
        assert Txn.sender == self.creator.value, "Only creator can initialize the guild"
        assert not self.initialized.value, "Guild already initialized"
        assert token.id != 0, "Token is the zero asset"
        assert permission_registry.id != 0, "Permission registry is the zero application"
        self._check_config(config)

        self.token.value = token
        self.permission_registry.value = permission_registry
        self.name.value = name.native
        self.config.value = config.copy()
        self.active_proposals.value = arc4.DynamicArray[arc4.UInt64]()
        self.initialized.value = True

        # Opt in so the vault can receive the token
        itxn.AssetTransfer(
            xfer_asset=token,
            asset_receiver=Global.current_application_address,
            asset_amount=0,
            fee=Global.min_txn_fee,
        ).submit()

    @arc4.abimethod
    def set_config(self, config: GuildConfig) -> None:
        """
        Replace the guild configuration.

        Only the guild itself may call this, which happens when an executed
        proposal contains a set_config call targeting the guild.
        """
        self._assert_initialized()
        self._set_config(Txn.sender, config)

    @subroutine
    def _set_config(self, caller: Account, config: GuildConfig) -> None:
        assert caller == Global.current_application_address, "Only callable by the guild itself"
        self._check_config(config)
        self.config.value = config.copy()

    @subroutine
    def _check_config(self, config: GuildConfig) -> None:
        assert config.proposal_time.native > 0, "Proposal time has to be more than 0"
        assert (
            config.lock_time.native >= config.proposal_time.native
        ), "Lock time has to be higher or equal to proposal time"
        assert (
            config.voting_power_for_proposal_execution.native > 0
        ), "Voting power for execution has to be more than 0"
        assert (
            config.voting_power_for_proposal_execution.native <= BASIS_POINTS
            and config.voting_power_for_proposal_creation.native <= BASIS_POINTS
            and config.voting_power_for_instant_execution.native <= BASIS_POINTS
        ), "Voting power percentage cannot exceed 100%"
        assert config.vote_gas.native <= MAX_VOTE_GAS, "Vote gas has to be equal or lower than 16"
        assert (
            config.max_active_proposals.native > 0
            and config.max_active_proposals.native <= MAX_ACTIVE_PROPOSALS
        ), "Invalid maximum amount of active proposals"

    @subroutine
    def _assert_initialized(self) -> None:
        assert self.initialized.value, "Guild not initialized"

    # ------------------------------------------------------------------
    # Token vault
    # ------------------------------------------------------------------

    @arc4.abimethod
    def lock_tokens(
        self,
        xfer: gtxn.AssetTransferTransaction,
        storage_payment: gtxn.PaymentTransaction,
    ) -> None:
        """
        Lock guild tokens sent in the preceding asset transfer.

        The caller becomes a member on the first nonzero lock. Tokens unlock
        `lock_time` seconds from now, or later if a vote already extended
        the lock.

        Args:
            xfer: Asset transfer of the guild token from the caller to the guild
            storage_payment: Payment to the guild covering any new box storage
        """
        self._assert_initialized()
        assert xfer.xfer_asset == self.token.value, "Only the guild token can be locked"
        assert xfer.asset_receiver == Global.current_application_address, "Tokens must be sent to the guild"
        assert xfer.sender == Txn.sender, "Tokens must come from the caller"
        amount = xfer.asset_amount
        assert amount > 0, "Tokens amount has to be greater than 0"

        lock = self._lock_of(Txn.sender)
        unlock_timestamp = Global.latest_timestamp + self.config.value.lock_time.native
        if lock.unlock_timestamp.native > unlock_timestamp:
            unlock_timestamp = lock.unlock_timestamp.native
        new_lock = LockRecord(
            amount=arc4.UInt64(lock.amount.native + amount),
            unlock_timestamp=arc4.UInt64(unlock_timestamp),
        )
        self._assert_storage_paid(
            storage_payment,
            box_storage_cost(self.locks.key_prefix + Txn.sender.bytes, new_lock.bytes.length)
            + self._snapshot_storage_cost(Txn.sender),
        )

        self._snapshot_voting_power(Txn.sender)

        if lock.amount.native == 0:
            self.total_members.value += 1
        self.locks[Txn.sender] = new_lock.copy()
        self.total_locked.value += amount

        arc4.emit(TokensLocked(voter=arc4.Address(Txn.sender), amount=arc4.UInt64(amount)))

    @arc4.abimethod
    def withdraw_tokens(self, amount: arc4.UInt64) -> None:
        """
        Withdraw unlocked tokens back to the caller.

        Args:
            amount: Tokens to withdraw
        """
        self._assert_initialized()
        lock = self._lock_of(Txn.sender)
        assert Global.latest_timestamp >= lock.unlock_timestamp.native, "Tokens still locked"
        assert amount.native <= lock.amount.native, "Unable to withdraw more tokens than locked"
        assert amount.native > 0, "Amount of tokens to withdraw must be greater than 0"

        self._snapshot_voting_power(Txn.sender)

        remaining = lock.amount.native - amount.native
        if remaining == 0:
            del self.locks[Txn.sender]
            self.total_members.value -= 1
        else:
            lock.amount = arc4.UInt64(remaining)
            self.locks[Txn.sender] = lock.copy()
        self.total_locked.value -= amount.native

        itxn.AssetTransfer(
            xfer_asset=self.token.value,
            asset_receiver=Txn.sender,
            asset_amount=amount.native,
            fee=Global.min_txn_fee,
        ).submit()

        arc4.emit(TokensWithdrawn(voter=arc4.Address(Txn.sender), amount=amount))

    @subroutine
    def _lock_of(self, account: Account) -> LockRecord:
        if account in self.locks:
            return self.locks[account].copy()
        return LockRecord(amount=arc4.UInt64(0), unlock_timestamp=arc4.UInt64(0))

    @subroutine
    def _locked_amount(self, account: Account) -> UInt64:
        return self._lock_of(account).amount.native

    # ------------------------------------------------------------------
    # Voting power strategy
    # ------------------------------------------------------------------

    @subroutine
    def _voting_power_for_proposal(self, account: Account, snapshot_id: UInt64) -> UInt64:
        """Voting power `account` can cast on a proposal. Live balance here."""
        return self._locked_amount(account)

    @subroutine
    def _total_voting_power_for_proposal(self, snapshot_id: UInt64) -> UInt64:
        return self.total_locked.value

    @subroutine
    def _next_proposal_snapshot_id(self) -> UInt64:
        return UInt64(0)

    @subroutine
    def _snapshot_voting_power(self, account: Account) -> None:
        """Hook run before the locked balance of `account` changes."""

    @subroutine
    def _snapshot_storage_cost(self, account: Account) -> UInt64:
        """Box storage _snapshot_voting_power(account) would add."""
        return UInt64(0)

    # ------------------------------------------------------------------
    # Box storage
    # ------------------------------------------------------------------

    @subroutine
    def _assert_storage_paid(self, payment: gtxn.PaymentTransaction, cost: UInt64) -> None:
        assert (
            payment.receiver == Global.current_application_address
        ), "Storage payment must be sent to the guild"
        assert payment.sender == Txn.sender, "Storage payment must come from the caller"
        assert payment.amount >= cost, "Storage cost not covered"

    @subroutine
    def _vote_storage_cost(self, proposal_id: Bytes, voter: Account) -> UInt64:
        return box_storage_cost(
            self.votes.key_prefix + self._vote_key(proposal_id, voter), UInt64(VOTE_SIZE)
        )

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    @arc4.abimethod
    def create_proposal(
        self,
        calls: arc4.DynamicArray[ProposalCall],
        total_options: arc4.UInt64,
        title: arc4.String,
        content_hash: arc4.String,
        storage_payment: gtxn.PaymentTransaction,
    ) -> arc4.DynamicBytes:
        """
        Create a proposal with `total_options` candidate call bundles.

        `calls` holds the bundles back to back, each with the same number of
        calls; option k (1-based) owns the k-th slice. Option 0 is the
        implicit "no action" option.

        Args:
            calls: Flattened calls of every option
            total_options: Number of options besides "no action"
            title: Proposal title
            content_hash: Hash of the off-chain proposal description
            storage_payment: Payment to the guild covering the proposal boxes

        Returns:
            The proposal id
        """
        self._assert_initialized()
        config = self.config.value.copy()

        active = self._active_proposal_indexes()
        assert (
            active.length < config.max_active_proposals.native
        ), "Maximum amount of active proposals reached"
        assert (
            self.total_locked.value >= config.min_tokens_locked_for_proposal_creation.native
        ), "Not enough tokens locked to create a proposal"
        assert (
            self.total_members.value >= config.min_members_for_proposal_creation.native
        ), "Not enough members to create a proposal"
        assert self._locked_amount(Txn.sender) >= voting_power_fraction(
            self.total_locked.value, config.voting_power_for_proposal_creation.native
        ), "Not enough voting power to create proposal"
        assert calls.length > 0, "Proposal calls cannot be empty"
        assert (
            total_options.native > 0 and calls.length % total_options.native == 0
        ), "Invalid total options or option calls length"
        assert (
            total_options.native <= MAX_OPTIONS_PER_PROPOSAL
        ), "Maximum amount of options per proposal reached"
        for i in urange(calls.length):
            self._check_call(calls[i].copy())

        index = self.total_proposals.value
        proposal_id = op.sha256(
            Txn.sender.bytes + op.itob(Global.latest_timestamp) + op.itob(index)
        )

        total_votes = arc4.DynamicArray[arc4.UInt64]()
        for _option in urange(total_options.native + 1):
            total_votes.append(arc4.UInt64(0))

        proposal = Proposal(
            creator=arc4.Address(Txn.sender),
            start_time=arc4.UInt64(Global.latest_timestamp),
            end_time=arc4.UInt64(Global.latest_timestamp + config.proposal_time.native),
            state=arc4.UInt64(PROPOSAL_SUBMITTED),
            snapshot_id=arc4.UInt64(0),
            title=title,
            content_hash=content_hash,
            total_votes=total_votes.copy(),
        )
        active.append(arc4.UInt64(index))
        self._assert_storage_paid(
            storage_payment,
            box_storage_cost(self.proposals.key_prefix + proposal_id, proposal.bytes.length)
            + box_storage_cost(self.proposal_calls.key_prefix + proposal_id, calls.bytes.length)
            + box_storage_cost(self.proposal_ids.key_prefix + op.itob(index), UInt64(32))
            + box_storage_cost(self.active_proposals.key, active.bytes.length),
        )

        proposal.snapshot_id = arc4.UInt64(self._next_proposal_snapshot_id())
        self.proposals[proposal_id] = proposal.copy()
        self.proposal_calls[proposal_id] = calls.copy()
        self.proposal_ids[index] = proposal_id
        self.active_proposals.value = active.copy()
        self.total_proposals.value = index + 1

        arc4.emit(ProposalCreated(proposal_id=arc4.DynamicBytes(proposal_id)))
        return arc4.DynamicBytes(proposal_id)

    @subroutine
    def _check_call(self, call: ProposalCall) -> None:
        if call.app_id.native != 0:
            assert (
                call.to.native == Application(call.app_id.native).address
            ), "Call target does not match application"
            assert (
                call.args.length > 0 and call.args[0].native.length == SELECTOR_LENGTH
            ), "Invalid function signature"
        else:
            # Payments and padding carry no method call
            assert call.args.length == 0, "Invalid function signature"

    @subroutine
    def _active_proposal_indexes(self) -> arc4.DynamicArray[arc4.UInt64]:
        """Tracked proposals that are still submitted and open for votes."""
        active = arc4.DynamicArray[arc4.UInt64]()
        tracked = self.active_proposals.value.copy()
        for i in urange(tracked.length):
            index = tracked[i].native
            proposal = self.proposals[self.proposal_ids[index]].copy()
            if (
                proposal.state.native == PROPOSAL_SUBMITTED
                and Global.latest_timestamp < proposal.end_time.native
            ):
                active.append(arc4.UInt64(index))
        return active

    @subroutine
    def _proposal(self, proposal_id: Bytes) -> Proposal:
        assert proposal_id in self.proposals, "Proposal does not exist"
        return self.proposals[proposal_id].copy()

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    @arc4.abimethod
    def set_vote(
        self,
        proposal_id: arc4.DynamicBytes,
        option: arc4.UInt64,
        voting_power: arc4.UInt64,
        storage_payment: gtxn.PaymentTransaction,
    ) -> None:
        """
        Vote on a proposal, or increase an existing vote on the same option.

        The fee refund is paid only when the vote adds voting power.

        Args:
            proposal_id: Proposal to vote on
            option: Option index, 0 = no action
            voting_power: Total voting power for this vote (not a delta)
            storage_payment: Payment to the guild covering a first vote's box
        """
        self._assert_storage_paid(
            storage_payment, self._vote_storage_cost(proposal_id.native, Txn.sender)
        )
        added = self._set_vote(Txn.sender, proposal_id.native, option.native, voting_power.native)
        if added > 0:
            self._refund_vote_gas()

    @arc4.abimethod
    def set_votes(
        self,
        proposal_ids: arc4.DynamicArray[arc4.DynamicBytes],
        options: arc4.DynamicArray[arc4.UInt64],
        voting_powers: arc4.DynamicArray[arc4.UInt64],
        storage_payment: gtxn.PaymentTransaction,
    ) -> None:
        """
        Cast several votes in one call. The fee refund is paid once, when at
        least one of the votes adds voting power.
        """
        assert (
            proposal_ids.length == options.length and proposal_ids.length == voting_powers.length
        ), "Wrong length of proposal ids, options or voting powers"
        cost = UInt64(0)
        for i in urange(proposal_ids.length):
            cost += self._vote_storage_cost(proposal_ids[i].native, Txn.sender)
        self._assert_storage_paid(storage_payment, cost)

        added = UInt64(0)
        for i in urange(proposal_ids.length):
            added += self._set_vote(
                Txn.sender,
                proposal_ids[i].native,
                options[i].native,
                voting_powers[i].native,
            )
        if added > 0:
            self._refund_vote_gas()

    @arc4.abimethod
    def set_signed_vote(
        self,
        proposal_id: arc4.DynamicBytes,
        option: arc4.UInt64,
        voting_power: arc4.UInt64,
        voter: arc4.Address,
        signature: arc4.DynamicBytes,
        storage_payment: gtxn.PaymentTransaction,
    ) -> None:
        """
        Submit a vote signed off-chain by `voter`.

        The ed25519 signature covers hash_vote(voter, proposal_id, option,
        voting_power). Each signed vote can be submitted once. The submitter
        pays for the vote box and the replay marker.
        """
        hashed_vote = self._hash_vote(
            voter.native, proposal_id.native, option.native, voting_power.native
        )
        assert hashed_vote not in self.signed_votes, "Already voted"

        ensure_budget(2500, OpUpFeeSource.GroupCredit)
        assert op.ed25519verify_bare(hashed_vote, signature.native, voter.bytes), "Wrong signer"

        self._assert_storage_paid(
            storage_payment,
            self._vote_storage_cost(proposal_id.native, voter.native)
            + box_storage_cost(self.signed_votes.key_prefix + hashed_vote, UInt64(1)),
        )

        self._set_vote(voter.native, proposal_id.native, option.native, voting_power.native)
        self.signed_votes[hashed_vote] = arc4.Bool(True)

    @arc4.abimethod(readonly=True)
    def hash_vote(
        self,
        voter: arc4.Address,
        proposal_id: arc4.DynamicBytes,
        option: arc4.UInt64,
        voting_power: arc4.UInt64,
    ) -> arc4.DynamicBytes:
        """Message a voter signs to authorize set_signed_vote."""
        return arc4.DynamicBytes(
            self._hash_vote(voter.native, proposal_id.native, option.native, voting_power.native)
        )

    @subroutine
    def _hash_vote(
        self, voter: Account, proposal_id: Bytes, option: UInt64, voting_power: UInt64
    ) -> Bytes:
        return op.sha256(voter.bytes + proposal_id + op.itob(option) + op.itob(voting_power))

    @subroutine
    def _vote_key(self, proposal_id: Bytes, voter: Account) -> Bytes:
        return op.sha256(proposal_id + voter.bytes)

    @subroutine
    def _set_vote(
        self, voter: Account, proposal_id: Bytes, option: UInt64, voting_power: UInt64
    ) -> UInt64:
        """Record the vote and return the voting power it added."""
        proposal = self._proposal(proposal_id)
        assert proposal.state.native == PROPOSAL_SUBMITTED, "Proposal already executed"
        assert Global.latest_timestamp < proposal.end_time.native, "Proposal ended, cannot be voted"
        assert option < proposal.total_votes.length, "Invalid option"

        vote_key = self._vote_key(proposal_id, voter)
        previous = UInt64(0)
        if vote_key in self.votes:
            vote = self.votes[vote_key].copy()
            assert (
                vote.option.native == option
            ), "Cannot change option voted, only increase voting power"
            previous = vote.voting_power.native
        assert voting_power > 0 and voting_power >= previous, "Invalid voting power amount"
        assert (
            self._voting_power_for_proposal(voter, proposal.snapshot_id.native) >= voting_power
        ), "Invalid voting power amount"

        proposal.total_votes[option] = arc4.UInt64(
            proposal.total_votes[option].native - previous + voting_power
        )
        self.proposals[proposal_id] = proposal.copy()
        self.votes[vote_key] = Vote(option=arc4.UInt64(option), voting_power=arc4.UInt64(voting_power))

        # Locked tokens cannot leave before the proposal ends
        if voter in self.locks:
            lock = self.locks[voter].copy()
            if lock.unlock_timestamp.native < proposal.end_time.native:
                lock.unlock_timestamp = proposal.end_time
                self.locks[voter] = lock.copy()

        arc4.emit(
            VoteAdded(
                proposal_id=arc4.DynamicBytes(proposal_id),
                option=arc4.UInt64(option),
                voter=arc4.Address(voter),
                voting_power=arc4.UInt64(voting_power),
            )
        )
        return voting_power - previous

    @subroutine
    def _refund_vote_gas(self) -> None:
        """
        Refund the vote fee to the caller from the guild balance.

        Pays vote_gas fee units at the per-unit fee the caller paid, capped at
        max_gas_price. Nothing is paid unless the guild can cover the whole
        refund and the fee of the refund payment.
        """
        vote_gas = self.config.value.vote_gas.native
        if vote_gas == 0:
            return

        gas_price = Txn.fee // vote_gas
        if gas_price > self.config.value.max_gas_price.native:
            gas_price = self.config.value.max_gas_price.native
        refund = vote_gas * gas_price

        guild = Global.current_application_address
        if refund > 0 and guild.balance >= guild.min_balance + refund + Global.min_txn_fee:
            itxn.Payment(
                receiver=Txn.sender,
                amount=refund,
                fee=Global.min_txn_fee,
            ).submit()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @arc4.abimethod
    def end_proposal(self, proposal_id: arc4.DynamicBytes) -> None:
        """
        Finalize a proposal and execute its winning option.

        Callable by anyone after the proposal ends, or earlier when a single
        option already holds the instant execution threshold. A failing call
        reverts the whole attempt and the proposal can be ended again until
        its execution window closes, after which it becomes Failed.

        Args:
            proposal_id: Proposal to finalize
        """
        assert not self.executing_proposal.value, "Proposal under execution"
        proposal = self._proposal(proposal_id.native)
        assert proposal.state.native == PROPOSAL_SUBMITTED, "Proposal already executed"

        config = self.config.value.copy()
        total_power = self._total_voting_power_for_proposal(proposal.snapshot_id.native)
        threshold = voting_power_fraction(
            total_power, config.voting_power_for_proposal_execution.native
        )
        winner = winning_option(proposal.total_votes, threshold)
        self._assert_proposal_ended(proposal, total_power, threshold)

        if winner == 0:
            proposal.state = arc4.UInt64(PROPOSAL_REJECTED)
            self.proposals[proposal_id.native] = proposal.copy()
        elif Global.latest_timestamp > proposal.end_time.native + config.time_for_execution.native:
            proposal.state = arc4.UInt64(PROPOSAL_FAILED)
            self.proposals[proposal_id.native] = proposal.copy()
        else:
            calls = self.proposal_calls[proposal_id.native].copy()
            calls_per_option = calls.length // (proposal.total_votes.length - 1)
            first_call = calls_per_option * (winner - 1)
            last_call = first_call + calls_per_option

            for i in urange(first_call, last_call):
                self._check_winning_call(calls[i].copy())

            proposal.state = arc4.UInt64(PROPOSAL_EXECUTED)
            self.proposals[proposal_id.native] = proposal.copy()

            self.executing_proposal.value = True
            for i in urange(first_call, last_call):
                self._execute_call(calls[i].copy())
            self.executing_proposal.value = False

        arc4.emit(ProposalStateChanged(proposal_id=proposal_id.copy(), new_state=proposal.state))

    @subroutine
    def _assert_proposal_ended(
        self, proposal: Proposal, total_power: UInt64, threshold: UInt64
    ) -> None:
        """
        Fail unless the proposal can be finalized now.

        Before end_time only a unique option holding the instant execution
        threshold (never below the execution threshold) ends the vote.
        """
        if Global.latest_timestamp < proposal.end_time.native:
            instant_threshold = voting_power_fraction(
                total_power, self.config.value.voting_power_for_instant_execution.native
            )
            if instant_threshold < threshold:
                instant_threshold = threshold
            assert (
                winning_option(proposal.total_votes, instant_threshold) != 0
            ), "Proposal hasn't ended yet"

    @subroutine
    def _is_self_call(self, call: ProposalCall) -> bool:
        return call.app_id.native == Global.current_application_id.id

    @subroutine
    def _self_call_config(self, call: ProposalCall) -> GuildConfig:
        assert (
            call.args.length == 2
            and call.args[0].native == arc4.arc4_signature(SET_CONFIG_SIGNATURE)
        ), "Proposal call failed"
        return GuildConfig.from_bytes(call.args[1].native)

    @subroutine
    def _check_self_call(self, call: ProposalCall) -> None:
        """Validate a call the guild makes to itself before anything runs."""
        self._check_config(self._self_call_config(call))

    @subroutine
    def _apply_self_call(self, call: ProposalCall) -> None:
        self._set_config(Global.current_application_address, self._self_call_config(call))

    @subroutine
    def _check_winning_call(self, call: ProposalCall) -> None:
        if call.to.native != Global.zero_address and self._is_self_call(call):
            self._check_self_call(call)

    @subroutine
    def _execute_call(self, call: ProposalCall) -> None:
        # Padding call
        if call.to.native == Global.zero_address:
            return

        function_signature = Bytes()
        if call.app_id.native != 0:
            function_signature = call.args[0].native

        # The registry rejects the whole transaction if the call is not allowed
        itxn.ApplicationCall(
            app_id=self.permission_registry.value,
            app_args=(
                arc4.arc4_signature(IS_CALL_ALLOWED_SIGNATURE),
                arc4.Address(Global.current_application_address),
                call.to,
                arc4.DynamicBytes(function_signature),
                call.value,
            ),
            fee=Global.min_txn_fee,
        ).submit()

        if call.value.native > 0:
            itxn.Payment(
                receiver=call.to.native,
                amount=call.value.native,
                fee=Global.min_txn_fee,
            ).submit()

        if self._is_self_call(call):
            self._apply_self_call(call)
        elif call.app_id.native != 0:
            op.ITxnCreate.begin()
            op.ITxnCreate.set_type_enum(TransactionType.ApplicationCall)
            op.ITxnCreate.set_application_id(call.app_id.native)
            for j in urange(call.args.length):
                op.ITxnCreate.set_application_args(call.args[j].native)
            op.ITxnCreate.set_fee(Global.min_txn_fee)
            op.ITxnCreate.submit()

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @arc4.abimethod(readonly=True)
    def get_config(self) -> GuildConfig:
        return self.config.value.copy()

    @arc4.abimethod(readonly=True)
    def get_name(self) -> arc4.String:
        return arc4.String(self.name.value)

    @arc4.abimethod(readonly=True)
    def get_token(self) -> arc4.UInt64:
        return arc4.UInt64(self.token.value.id)

    @arc4.abimethod(readonly=True)
    def get_permission_registry(self) -> arc4.UInt64:
        return arc4.UInt64(self.permission_registry.value.id)

    @arc4.abimethod(readonly=True)
    def voting_power_of(self, account: arc4.Address) -> arc4.UInt64:
        """Current voting power of an account (its locked tokens)."""
        return arc4.UInt64(self._locked_amount(account.native))

    @arc4.abimethod(readonly=True)
    def voting_powers_of(
        self, accounts: arc4.DynamicArray[arc4.Address]
    ) -> arc4.DynamicArray[arc4.UInt64]:
        powers = arc4.DynamicArray[arc4.UInt64]()
        for i in urange(accounts.length):
            powers.append(arc4.UInt64(self._locked_amount(accounts[i].native)))
        return powers

    @arc4.abimethod(readonly=True)
    def get_lock(self, account: arc4.Address) -> LockRecord:
        return self._lock_of(account.native)

    @arc4.abimethod(readonly=True)
    def get_voter_lock_timestamp(self, account: arc4.Address) -> arc4.UInt64:
        return self._lock_of(account.native).unlock_timestamp

    @arc4.abimethod(readonly=True)
    def get_total_locked(self) -> arc4.UInt64:
        return arc4.UInt64(self.total_locked.value)

    @arc4.abimethod(readonly=True)
    def get_total_members(self) -> arc4.UInt64:
        return arc4.UInt64(self.total_members.value)

    @arc4.abimethod(readonly=True)
    def get_voting_power_for_proposal_creation(self) -> arc4.UInt64:
        return arc4.UInt64(
            voting_power_fraction(
                self.total_locked.value,
                self.config.value.voting_power_for_proposal_creation.native,
            )
        )

    @arc4.abimethod(readonly=True)
    def get_voting_power_for_proposal_execution(self) -> arc4.UInt64:
        return arc4.UInt64(
            voting_power_fraction(
                self.total_locked.value,
                self.config.value.voting_power_for_proposal_execution.native,
            )
        )

    @arc4.abimethod(readonly=True)
    def get_proposal(self, proposal_id: arc4.DynamicBytes) -> Proposal:
        return self._proposal(proposal_id.native)

    @arc4.abimethod(readonly=True)
    def get_proposal_calls(self, proposal_id: arc4.DynamicBytes) -> arc4.DynamicArray[ProposalCall]:
        assert proposal_id.native in self.proposal_calls, "Proposal does not exist"
        return self.proposal_calls[proposal_id.native].copy()

    @arc4.abimethod(readonly=True)
    def get_proposal_id(self, index: arc4.UInt64) -> arc4.DynamicBytes:
        assert index.native < self.total_proposals.value, "Proposal does not exist"
        return arc4.DynamicBytes(self.proposal_ids[index.native])

    @arc4.abimethod(readonly=True)
    def get_total_proposals(self) -> arc4.UInt64:
        return arc4.UInt64(self.total_proposals.value)

    @arc4.abimethod(readonly=True)
    def get_active_proposals_now(self) -> arc4.UInt64:
        """Proposals still submitted whose voting window is open."""
        return arc4.UInt64(self._active_proposal_indexes().length)

    @arc4.abimethod(readonly=True)
    def get_proposal_votes_of_voter(
        self, proposal_id: arc4.DynamicBytes, voter: arc4.Address
    ) -> Vote:
        vote_key = self._vote_key(proposal_id.native, voter.native)
        if vote_key in self.votes:
            return self.votes[vote_key].copy()
        return Vote(option=arc4.UInt64(0), voting_power=arc4.UInt64(0))
