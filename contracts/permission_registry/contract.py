"""
Permission Registry Smart Contract

Policy oracle that decides which calls an account (typically a guild
application) may make and how many microAlgos it may move per round.

Features:
- Permissions keyed by (from, to, function signature)
- Per-round native value limit per `from` account
- Raised limits and new permissions activate after a per-account delay
- Lowered limits and revocations apply immediately
- Calls from an account to itself, or to the registry, are always allowed

Algorand Primitives Used:
- AVM Application (smart contract)
- Boxes (permissions and delays)
- ARC-28 events
"""

from algopy import (
    ARC4Contract,
    Account,
    BoxMap,
    Bytes,
    Global,
    GlobalState,
    Txn,
    UInt64,
    arc4,
    op,
    subroutine,
)

from contracts.guild.types import SELECTOR_LENGTH


class Permission(arc4.Struct):
    value_allowed: arc4.UInt64
    from_time: arc4.UInt64
    value_transferred: arc4.UInt64
    value_transferred_on_round: arc4.UInt64


class PermissionSet(arc4.Struct):
    from_address: arc4.Address
    to_address: arc4.Address
    function_signature: arc4.DynamicBytes
    value_allowed: arc4.UInt64
    from_time: arc4.UInt64


class PermissionRegistry(ARC4Contract):
    """
    Call permission registry.

    State Schema:
    - Global State:
        - owner: Account that can manage permissions of any `from`

    - Boxes:
        - p{sha256(from, to, signature)}: Permission
        - d{from}: Activation delay in seconds for raised permissions
    """

    # Global State
    owner: GlobalState[Account]

    def __init__(self) -> None:
        self.permissions = BoxMap(Bytes, Permission, key_prefix=b"p")
        self.permission_delays = BoxMap(Account, arc4.UInt64, key_prefix=b"d")

    @arc4.abimethod(create="require")
    def create(self) -> None:
        """Create the registry. The creator becomes the owner."""
        self.owner.value = Txn.sender

    @arc4.abimethod
    def transfer_ownership(self, new_owner: arc4.Address) -> None:
        assert Txn.sender == self.owner.value, "Only callable by owner"
        self.owner.value = new_owner.native

    @arc4.abimethod
    def set_permission_delay(self, from_address: arc4.Address, delay: arc4.UInt64) -> None:
        """
        Set how long raised permissions of `from_address` take to activate.

        Args:
            from_address: Account whose permissions are delayed
            delay: Delay in seconds
        """
        self._assert_can_act_for(from_address.native)
        self.permission_delays[from_address.native] = delay

    @arc4.abimethod
    def set_permission(
        self,
        from_address: arc4.Address,
        to_address: arc4.Address,
        function_signature: arc4.DynamicBytes,
        value_allowed: arc4.UInt64,
        allowed: arc4.Bool,
    ) -> None:
        """
        Grant, change or revoke a call permission.

        Use the zero address and an empty signature as `to_address` and
        `function_signature` to set the per-round native value limit.

        Args:
            from_address: Account making the calls
            to_address: Call target
            function_signature: 4-byte method selector, empty for payments
            value_allowed: microAlgos allowed per round
            allowed: False revokes the permission
        """
        self._assert_can_act_for(from_address.native)
        assert (
            to_address.native != Global.current_application_address
        ), "Cannot set permissions to the registry"
        signature = function_signature.native
        assert (
            signature.length == 0 or signature.length == SELECTOR_LENGTH
        ), "Invalid function signature"

        key = self._permission_key(from_address.native, to_address.native, signature)
        permission = self._permission(key)

        if allowed.native:
            from_time = permission.from_time.native
            if from_time == 0 or value_allowed.native > permission.value_allowed.native:
                from_time = Global.latest_timestamp + self._permission_delay(from_address.native)
            permission.value_allowed = value_allowed
            permission.from_time = arc4.UInt64(from_time)
        else:
            permission.value_allowed = arc4.UInt64(0)
            permission.from_time = arc4.UInt64(0)

        self.permissions[key] = permission.copy()

        arc4.emit(
            PermissionSet(
                from_address=from_address,
                to_address=to_address,
                function_signature=function_signature.copy(),
                value_allowed=permission.value_allowed,
                from_time=permission.from_time,
            )
        )

    @arc4.abimethod
    def is_call_allowed(
        self,
        from_address: arc4.Address,
        to_address: arc4.Address,
        function_signature: arc4.DynamicBytes,
        value: arc4.UInt64,
    ) -> None:
        """
        Assert that a call is allowed and record the value it moves.

        Fails the transaction when the call is not allowed.

        Args:
            from_address: Account making the call, must be the caller or owner
            to_address: Call target
            function_signature: 4-byte method selector, empty for payments
            value: microAlgos sent with the call
        """
        self._assert_can_act_for(from_address.native)
        signature = function_signature.native

        native_key = self._permission_key(from_address.native, Global.zero_address, Bytes())
        native_limit = self._permission(native_key)
        if value.native > 0:
            native_limit = self._charge(native_key, value.native)

        if not self._is_internal_call(from_address.native, to_address.native):
            key = self._permission_key(from_address.native, to_address.native, signature)
            if self._permission(key).from_time.native > 0:
                self.permissions[key] = self._charge(key, value.native)
            else:
                assert signature.length == 0, "Call not allowed"

        if value.native > 0:
            self.permissions[native_key] = native_limit.copy()

    @arc4.abimethod(readonly=True)
    def get_permission(
        self,
        from_address: arc4.Address,
        to_address: arc4.Address,
        function_signature: arc4.DynamicBytes,
    ) -> Permission:
        return self._permission(
            self._permission_key(from_address.native, to_address.native, function_signature.native)
        )

    @arc4.abimethod(readonly=True)
    def get_permission_delay(self, from_address: arc4.Address) -> arc4.UInt64:
        return arc4.UInt64(self._permission_delay(from_address.native))

    @subroutine
    def _assert_can_act_for(self, from_account: Account) -> None:
        assert (
            Txn.sender == self.owner.value or Txn.sender == from_account
        ), "Only owner can specify from value"

    @subroutine
    def _is_internal_call(self, from_account: Account, to_account: Account) -> bool:
        return from_account == to_account or to_account == Global.current_application_address

    @subroutine
    def _permission_key(self, from_account: Account, to_account: Account, signature: Bytes) -> Bytes:
        return op.sha256(from_account.bytes + to_account.bytes + signature)

    @subroutine
    def _permission(self, key: Bytes) -> Permission:
        if key in self.permissions:
            return self.permissions[key].copy()
        return Permission(
            value_allowed=arc4.UInt64(0),
            from_time=arc4.UInt64(0),
            value_transferred=arc4.UInt64(0),
            value_transferred_on_round=arc4.UInt64(0),
        )

    @subroutine
    def _permission_delay(self, from_account: Account) -> UInt64:
        if from_account in self.permission_delays:
            return self.permission_delays[from_account].native
        return UInt64(0)

    @subroutine
    def _charge(self, key: Bytes, value: UInt64) -> Permission:
        """Permission at `key` with `value` added to this round's transfers."""
        permission = self._permission(key)
        assert permission.from_time.native <= Global.latest_timestamp, "Call not allowed yet"

        transferred = value
        if permission.value_transferred_on_round.native == Global.round:
            transferred += permission.value_transferred.native
        assert transferred <= permission.value_allowed.native, "Value limit reached"

        permission.value_transferred = arc4.UInt64(transferred)
        permission.value_transferred_on_round = arc4.UInt64(Global.round)
        return permission
