"""
Snapshot Guild Smart Contract

A Guild whose votes are weighed with the voting power each member had when
the proposal was created. Locking more tokens after a proposal exists does
not add weight to that proposal, and the execution threshold is computed
from the total locked at the same snapshot.

Features:
- Snapshot id advanced on every proposal creation
- Per-account and total locked history, recorded lazily before each change
- Historical voting power lookups by snapshot id

Algorand Primitives Used:
- AVM Application (smart contract)
- Boxes (snapshot histories)
"""

from algopy import Account, Box, BoxMap, GlobalState, UInt64, arc4, subroutine

from contracts.guild.contract import Guild
from contracts.guild.storage import box_storage_cost


class SnapshotHistory(arc4.Struct):
    """Values recorded per snapshot id, ids ascending."""

    ids: arc4.DynamicArray[arc4.UInt64]
    values: arc4.DynamicArray[arc4.UInt64]


@subroutine
def empty_history() -> SnapshotHistory:
    return SnapshotHistory(
        ids=arc4.DynamicArray[arc4.UInt64](),
        values=arc4.DynamicArray[arc4.UInt64](),
    )


@subroutine
def record_snapshot(history: SnapshotHistory, snapshot_id: UInt64, value: UInt64) -> SnapshotHistory:
    """Append `value` for `snapshot_id` unless that id is already recorded."""
    updated = history.copy()
    count = updated.ids.length
    if count == 0 or updated.ids[count - 1].native < snapshot_id:
        updated.ids.append(arc4.UInt64(snapshot_id))
        updated.values.append(arc4.UInt64(value))
    return updated


@subroutine
def snapshot_value_at(history: SnapshotHistory, snapshot_id: UInt64) -> tuple[bool, UInt64]:
    """
    Look up the value recorded for a snapshot.

    The value for `snapshot_id` is the one recorded at the first id greater
    than or equal to it. When no such id exists the value never changed
    after the snapshot and the caller should use the live value.

    Returns:
        Tuple of (found, value)
    """
    low = UInt64(0)
    high = history.ids.length
    while low < high:
        middle = (low + high) // 2
        if history.ids[middle].native > snapshot_id:
            high = middle
        else:
            low = middle + 1

    index = low
    if low > 0 and history.ids[low - 1].native == snapshot_id:
        index = low - 1

    if index == history.ids.length:
        return False, UInt64(0)
    return True, history.values[index].native


class SnapshotGuild(Guild):
    """
    Guild with voting power taken at proposal creation.

    State Schema:
    - Global State (in addition to Guild):
        - current_snapshot_id: Id of the snapshot being recorded, starts at 1

    - Boxes (in addition to Guild):
        - h{account}: SnapshotHistory of the account's locked tokens
        - total_history: SnapshotHistory of total locked tokens
    """

    def __init__(self) -> None:
        super().__init__()
        self.current_snapshot_id = GlobalState(UInt64(1))
        self.account_snapshots = BoxMap(Account, SnapshotHistory, key_prefix=b"h")
        self.total_locked_snapshots = Box(SnapshotHistory, key=b"total_history")

    @subroutine
    def _voting_power_for_proposal(self, account: Account, snapshot_id: UInt64) -> UInt64:
        return self._voting_power_of_at(account, snapshot_id)

    @subroutine
    def _total_voting_power_for_proposal(self, snapshot_id: UInt64) -> UInt64:
        return self._total_locked_at(snapshot_id)

    @subroutine
    def _next_proposal_snapshot_id(self) -> UInt64:
        self.current_snapshot_id.value += 1
        return self.current_snapshot_id.value

    @subroutine
    def _snapshot_voting_power(self, account: Account) -> None:
        self.account_snapshots[account] = self._next_account_history(account)
        self.total_locked_snapshots.value = self._next_total_history()

    @subroutine
    def _snapshot_storage_cost(self, account: Account) -> UInt64:
        return box_storage_cost(
            self.account_snapshots.key_prefix + account.bytes,
            self._next_account_history(account).bytes.length,
        ) + box_storage_cost(
            self.total_locked_snapshots.key, self._next_total_history().bytes.length
        )

    @subroutine
    def _next_account_history(self, account: Account) -> SnapshotHistory:
        history = empty_history()
        if account in self.account_snapshots:
            history = self.account_snapshots[account].copy()
        return record_snapshot(history, self.current_snapshot_id.value, self._locked_amount(account))

    @subroutine
    def _next_total_history(self) -> SnapshotHistory:
        totals = empty_history()
        if self.total_locked_snapshots:
            totals = self.total_locked_snapshots.value.copy()
        return record_snapshot(totals, self.current_snapshot_id.value, self.total_locked.value)

    @subroutine
    def _check_snapshot_id(self, snapshot_id: UInt64) -> None:
        assert (
            snapshot_id > 0 and snapshot_id <= self.current_snapshot_id.value
        ), "Invalid snapshot id"

    @subroutine
    def _voting_power_of_at(self, account: Account, snapshot_id: UInt64) -> UInt64:
        self._check_snapshot_id(snapshot_id)
        if account in self.account_snapshots:
            found, value = snapshot_value_at(self.account_snapshots[account].copy(), snapshot_id)
            if found:
                return value
        return self._locked_amount(account)

    @subroutine
    def _total_locked_at(self, snapshot_id: UInt64) -> UInt64:
        self._check_snapshot_id(snapshot_id)
        if self.total_locked_snapshots:
            found, value = snapshot_value_at(self.total_locked_snapshots.value.copy(), snapshot_id)
            if found:
                return value
        return self.total_locked.value

    @arc4.abimethod(readonly=True)
    def voting_power_of_at(self, account: arc4.Address, snapshot_id: arc4.UInt64) -> arc4.UInt64:
        """Voting power of an account at a snapshot id."""
        return arc4.UInt64(self._voting_power_of_at(account.native, snapshot_id.native))

    @arc4.abimethod(readonly=True)
    def total_locked_at(self, snapshot_id: arc4.UInt64) -> arc4.UInt64:
        return arc4.UInt64(self._total_locked_at(snapshot_id.native))

    @arc4.abimethod(readonly=True)
    def get_current_snapshot_id(self) -> arc4.UInt64:
        return arc4.UInt64(self.current_snapshot_id.value)

    @arc4.abimethod(readonly=True)
    def get_proposal_snapshot_id(self, proposal_id: arc4.DynamicBytes) -> arc4.UInt64:
        return self._proposal(proposal_id.native).snapshot_id
