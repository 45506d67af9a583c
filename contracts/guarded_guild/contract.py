"""
Guarded Guild Smart Contract

A Guild with a guardian account that watches over proposals. While a guardian
is set, members have to wait an extra period after a proposal ends before they
can finalize it, and the guardian can finalize or reject proposals on its own
during that period.

Features:
- Guardian set once by anyone, then only through executed proposals
- Extra finalization delay for everyone but the guardian
- Unilateral rejection of submitted proposals by the guardian

Algorand Primitives Used:
- AVM Application (smart contract)
- Global State (guardian configuration)
- ARC-28 events
"""

from algopy import Account, Global, GlobalState, Txn, UInt64, arc4, op, subroutine

from contracts.guild.contract import Guild
from contracts.guild.types import (
    PROPOSAL_REJECTED,
    PROPOSAL_SUBMITTED,
    Proposal,
    ProposalCall,
    ProposalStateChanged,
)

SET_GUARDIAN_CONFIG_SIGNATURE = "set_guardian_config(address,uint64)void"


class GuardedGuild(Guild):
    """
    Guild with a guardian.

    State Schema:
    - Global State (in addition to Guild):
        - guardian: Account allowed to reject proposals and end them without delay
        - extra_time_for_guardian: Seconds members wait after end_time while a guardian is set
    """

    def __init__(self) -> None:
        super().__init__()
        self.guardian = GlobalState(Global.zero_address)
        self.extra_time_for_guardian = GlobalState(UInt64(0))

    @arc4.abimethod
    def set_guardian_config(self, guardian: arc4.Address, extra_time: arc4.UInt64) -> None:
        """
        Set the guardian and its extra time.

        Anyone may set the first guardian. Once one is set, only the guild
        itself can change it, through an executed proposal.

        Args:
            guardian: New guardian account
            extra_time: Seconds members wait after a proposal ends
        """
        self._assert_initialized()
        self._set_guardian_config(Txn.sender, guardian.native, extra_time.native)

    @subroutine
    def _set_guardian_config(self, caller: Account, guardian: Account, extra_time: UInt64) -> None:
        assert guardian != Global.zero_address, "Guardian cannot be the zero address"
        assert (
            self.guardian.value == Global.zero_address
            or caller == Global.current_application_address
        ), "Only callable by the guild itself when a guardian is set"
        self.guardian.value = guardian
        self.extra_time_for_guardian.value = extra_time

    @arc4.abimethod
    def reject_proposal(self, proposal_id: arc4.DynamicBytes) -> None:
        """Reject a submitted proposal. Guardian only."""
        proposal = self._proposal(proposal_id.native)
        assert proposal.state.native == PROPOSAL_SUBMITTED, "Proposal already executed"
        assert Txn.sender == self.guardian.value, "Proposal can be rejected only by guardian"

        proposal.state = arc4.UInt64(PROPOSAL_REJECTED)
        self.proposals[proposal_id.native] = proposal.copy()
        arc4.emit(ProposalStateChanged(proposal_id=proposal_id.copy(), new_state=proposal.state))

    @subroutine
    def _assert_proposal_ended(
        self, proposal: Proposal, total_power: UInt64, threshold: UInt64
    ) -> None:
        if self.guardian.value == Global.zero_address or Txn.sender == self.guardian.value:
            super()._assert_proposal_ended(proposal, total_power, threshold)
        else:
            assert (
                Global.latest_timestamp
                >= proposal.end_time.native + self.extra_time_for_guardian.value
            ), "Proposal hasn't ended yet"

    @subroutine
    def _is_guardian_config_call(self, call: ProposalCall) -> bool:
        return call.args[0].native == arc4.arc4_signature(SET_GUARDIAN_CONFIG_SIGNATURE)

    @subroutine
    def _guardian_config_args(self, call: ProposalCall) -> tuple[Account, UInt64]:
        assert (
            call.args.length == 3
            and call.args[1].native.length == 32
            and call.args[2].native.length == 8
        ), "Proposal call failed"
        return Account(call.args[1].native), op.btoi(call.args[2].native)

    @subroutine
    def _check_self_call(self, call: ProposalCall) -> None:
        if self._is_guardian_config_call(call):
            guardian, _extra_time = self._guardian_config_args(call)
            assert guardian != Global.zero_address, "Guardian cannot be the zero address"
        else:
            super()._check_self_call(call)

    @subroutine
    def _apply_self_call(self, call: ProposalCall) -> None:
        if self._is_guardian_config_call(call):
            guardian, extra_time = self._guardian_config_args(call)
            self._set_guardian_config(Global.current_application_address, guardian, extra_time)
        else:
            super()._apply_self_call(call)

    @arc4.abimethod(readonly=True)
    def get_guardian(self) -> arc4.Address:
        return arc4.Address(self.guardian.value)

    @arc4.abimethod(readonly=True)
    def get_extra_time_for_guardian(self) -> arc4.UInt64:
        return arc4.UInt64(self.extra_time_for_guardian.value)
