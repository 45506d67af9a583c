"""
Vote tally resolution.

The tally is a vector of accumulated voting power per option, where option 0
is the implicit "no action" option. A proposal has a winner only when a single
non-zero option holds the highest tally and that tally reaches the threshold.
Ties for the highest tally always resolve to option 0.
"""

from algopy import UInt64, arc4, subroutine, urange

from contracts.guild.types import BASIS_POINTS


@subroutine
def winning_option(total_votes: arc4.DynamicArray[arc4.UInt64], threshold: UInt64) -> UInt64:
    """
    Resolve the winning option of a tally.

    Args:
        total_votes: Accumulated voting power per option, index 0 = no action
        threshold: Minimum voting power the winner needs

    Returns:
        Index of the winning option, or 0 when nothing wins
    """
    winner = UInt64(0)
    highest = total_votes[0].native

    for option in urange(1, total_votes.length):
        votes = total_votes[option].native
        if votes >= threshold and votes >= highest:
            if votes == highest:
                winner = UInt64(0)
            else:
                winner = option
                highest = votes

    return winner


@subroutine
def voting_power_fraction(total: UInt64, numerator: UInt64) -> UInt64:
    """Share of `total` expressed in basis points."""
    return total * numerator // BASIS_POINTS
