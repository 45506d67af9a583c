"""
Tests for the PermissionRegistry

Tests cover:
- Ownership and who may manage a `from` account
- Permission activation delay
- Immediate limit reductions and revocations
- Per-round native value limit
- Internal calls and missing permissions
"""

import pytest
from algopy import Account, UInt64, arc4
from algopy_testing import AlgopyTestContext

from contracts.permission_registry.contract import PermissionRegistry
from helpers import START_TIME, selector

PING = selector("ping()void")


@pytest.fixture
def registry(context: AlgopyTestContext) -> PermissionRegistry:
    context.ledger.patch_global_fields(latest_timestamp=UInt64(START_TIME), round=UInt64(10))
    contract = PermissionRegistry()
    contract.create()
    return contract


@pytest.fixture
def caller(context: AlgopyTestContext) -> Account:
    """Account whose calls are checked, usually a guild application."""
    return context.any.account()


def set_permission(
    context: AlgopyTestContext,
    registry: PermissionRegistry,
    sender: Account,
    from_account: Account,
    to: Account,
    signature: bytes,
    value_allowed: int,
    allowed: bool = True,
) -> None:
    with context.txn.create_group(active_txn_overrides={"sender": sender}):
        registry.set_permission(
            arc4.Address(from_account),
            arc4.Address(to),
            arc4.DynamicBytes(signature),
            arc4.UInt64(value_allowed),
            arc4.Bool(allowed),
        )


def check_call(
    context: AlgopyTestContext,
    registry: PermissionRegistry,
    from_account: Account,
    to: Account,
    signature: bytes,
    value: int,
) -> None:
    with context.txn.create_group(active_txn_overrides={"sender": from_account}):
        registry.is_call_allowed(
            arc4.Address(from_account),
            arc4.Address(to),
            arc4.DynamicBytes(signature),
            arc4.UInt64(value),
        )


def set_native_limit(context, registry, from_account: Account, value_allowed: int) -> None:
    set_permission(
        context, registry, from_account, from_account, Account(), b"", value_allowed
    )


class TestOwnership:
    """Test suite for owner management."""

    def test_creator_is_owner(self, context: AlgopyTestContext, registry: PermissionRegistry):
        assert registry.owner.value == context.default_sender

    def test_transfer_ownership(self, context: AlgopyTestContext, registry: PermissionRegistry):
        """Test the owner can hand over the registry."""
        # Arrange
        new_owner = context.any.account()

        # Act
        registry.transfer_ownership(arc4.Address(new_owner))

        # Assert
        assert registry.owner.value == new_owner

    def test_transfer_ownership_by_stranger_fails(self, context: AlgopyTestContext, registry: PermissionRegistry):
        stranger = context.any.account()
        with context.txn.create_group(active_txn_overrides={"sender": stranger}):
            with pytest.raises(AssertionError, match="Only callable by owner"):
                registry.transfer_ownership(arc4.Address(stranger))

    def test_stranger_cannot_set_permission_for_other(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        """Test only the owner or `from` itself manages `from` permissions."""
        # Arrange
        stranger = context.any.account()

        # Act & Assert
        with pytest.raises(AssertionError, match="Only owner can specify from value"):
            set_permission(context, registry, stranger, caller, context.any.account(), PING, 0)

    def test_owner_sets_permission_for_other(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        # Arrange
        target = context.any.account()

        # Act
        set_permission(context, registry, context.default_sender, caller, target, PING, 0)

        # Assert
        permission = registry.get_permission(
            arc4.Address(caller), arc4.Address(target), arc4.DynamicBytes(PING)
        )
        assert permission.from_time.native == START_TIME


class TestPermissionDelay:
    """Test suite for delayed activation."""

    def test_new_permission_waits_for_delay(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        """Test a permission is usable only after the delay elapses."""
        # Arrange
        target = context.any.account()
        with context.txn.create_group(active_txn_overrides={"sender": caller}):
            registry.set_permission_delay(arc4.Address(caller), arc4.UInt64(100))
        set_permission(context, registry, caller, caller, target, PING, 0)

        # Act & Assert
        assert registry.get_permission_delay(arc4.Address(caller)).native == 100
        with pytest.raises(AssertionError, match="Call not allowed yet"):
            check_call(context, registry, caller, target, PING, 0)

        context.ledger.patch_global_fields(latest_timestamp=UInt64(START_TIME + 100))
        check_call(context, registry, caller, target, PING, 0)

    def test_lowering_limit_is_immediate(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        """Test a reduced native limit keeps its activation time."""
        # Arrange
        with context.txn.create_group(active_txn_overrides={"sender": caller}):
            registry.set_permission_delay(arc4.Address(caller), arc4.UInt64(100))
        set_native_limit(context, registry, caller, 1000)
        context.ledger.patch_global_fields(latest_timestamp=UInt64(START_TIME + 100))

        # Act
        set_native_limit(context, registry, caller, 500)

        # Assert
        target = context.any.account()
        with pytest.raises(AssertionError, match="Value limit reached"):
            check_call(context, registry, caller, target, b"", 600)
        check_call(context, registry, caller, target, b"", 500)

    def test_raising_limit_restarts_delay(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        # Arrange
        with context.txn.create_group(active_txn_overrides={"sender": caller}):
            registry.set_permission_delay(arc4.Address(caller), arc4.UInt64(100))
        set_native_limit(context, registry, caller, 500)
        context.ledger.patch_global_fields(latest_timestamp=UInt64(START_TIME + 100))

        # Act
        set_native_limit(context, registry, caller, 1000)

        # Assert
        with pytest.raises(AssertionError, match="Call not allowed yet"):
            check_call(context, registry, caller, context.any.account(), b"", 100)


class TestIsCallAllowed:
    """Test suite for is_call_allowed()."""

    def test_native_limit_per_round(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        """Test value sent within one round accumulates against the limit."""
        # Arrange
        set_native_limit(context, registry, caller, 1000)
        target = context.any.account()

        # Act & Assert
        check_call(context, registry, caller, target, b"", 600)
        with pytest.raises(AssertionError, match="Value limit reached"):
            check_call(context, registry, caller, target, b"", 600)

        context.ledger.patch_global_fields(round=UInt64(11))
        check_call(context, registry, caller, target, b"", 600)

        native = registry.get_permission(
            arc4.Address(caller), arc4.Address(Account()), arc4.DynamicBytes(b"")
        )
        assert native.value_transferred.native == 600
        assert native.value_transferred_on_round.native == 11

    def test_value_without_native_limit_fails(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        with pytest.raises(AssertionError, match="Value limit reached"):
            check_call(context, registry, caller, context.any.account(), b"", 1)

    def test_specific_value_limit(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        """Test a call with value is also bound by its own permission."""
        # Arrange
        target = context.any.account()
        set_native_limit(context, registry, caller, 10000)
        set_permission(context, registry, caller, caller, target, PING, 100)

        # Act & Assert
        check_call(context, registry, caller, target, PING, 100)
        with pytest.raises(AssertionError, match="Value limit reached"):
            check_call(context, registry, caller, target, PING, 1)

    def test_zero_value_payment_needs_no_permission(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        check_call(context, registry, caller, context.any.account(), b"", 0)

    def test_method_call_without_permission_fails(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        with pytest.raises(AssertionError, match="Call not allowed"):
            check_call(context, registry, caller, context.any.account(), PING, 0)

    def test_internal_calls_are_allowed(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        """Test calls to itself and to the registry need no permission."""
        # Arrange
        registry_address = context.ledger.get_app(registry).address

        # Act & Assert
        check_call(context, registry, caller, caller, PING, 0)
        check_call(context, registry, caller, registry_address, PING, 0)

    def test_revoked_permission_fails(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        # Arrange
        target = context.any.account()
        set_permission(context, registry, caller, caller, target, PING, 0)
        check_call(context, registry, caller, target, PING, 0)

        # Act
        set_permission(context, registry, caller, caller, target, PING, 0, allowed=False)

        # Assert
        with pytest.raises(AssertionError, match="Call not allowed"):
            check_call(context, registry, caller, target, PING, 0)

    def test_cannot_check_for_other_account(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        stranger = context.any.account()
        with context.txn.create_group(active_txn_overrides={"sender": stranger}):
            with pytest.raises(AssertionError, match="Only owner can specify from value"):
                registry.is_call_allowed(
                    arc4.Address(caller),
                    arc4.Address(stranger),
                    arc4.DynamicBytes(b""),
                    arc4.UInt64(0),
                )


class TestSetPermissionValidation:
    def test_registry_as_target_fails(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        registry_address = context.ledger.get_app(registry).address
        with pytest.raises(AssertionError, match="Cannot set permissions to the registry"):
            set_permission(context, registry, caller, caller, registry_address, PING, 0)

    def test_invalid_signature_length_fails(self, context: AlgopyTestContext, registry: PermissionRegistry, caller: Account):
        with pytest.raises(AssertionError, match="Invalid function signature"):
            set_permission(context, registry, caller, caller, context.any.account(), b"\x01\x02\x03", 0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
