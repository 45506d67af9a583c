"""
Box storage accounting.

A box raises the minimum balance of the application account by a flat amount
plus an amount per byte of its key and value. Operations that create or grow
boxes charge that increase to the caller through a grouped payment.
"""

from algopy import Bytes, UInt64, op, subroutine

from contracts.guild.types import BOX_BYTE_MIN_BALANCE, BOX_FLAT_MIN_BALANCE


@subroutine
def box_storage_cost(box_key: Bytes, value_length: UInt64) -> UInt64:
    """
    Minimum balance increase of storing `value_length` bytes under `box_key`.

    Returns 0 when the box already exists and does not grow.
    """
    current_length, exists = op.Box.length(box_key)
    if not exists:
        return BOX_FLAT_MIN_BALANCE + BOX_BYTE_MIN_BALANCE * (box_key.length + value_length)
    if value_length > current_length:
        return BOX_BYTE_MIN_BALANCE * (value_length - current_length)
    return UInt64(0)
