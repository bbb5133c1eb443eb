# server/pending.py
"""Per-round state: votes, finishers, ballot draw and tally."""

from dataclasses import dataclass, field
from typing import Collection, Dict, List, Optional, Sequence, Set

from course.randomness import RandomSource


@dataclass
class PendingVotes:
    """Latest vote per participant for the current ballot."""

    _votes: Dict[str, str] = field(default_factory=dict)

    def record_vote(self, player_id: str, choice: str) -> None:
        """Record a vote; a later vote replaces an earlier one."""
        self._votes[player_id] = choice

    def get_vote(self, player_id: str) -> Optional[str]:
        """Look up a participant's current vote.

        Args:
            player_id: Voter identity

        Returns:
            The chosen option, or None if they have not voted
        """
        return self._votes.get(player_id)

    def get_all_votes(self) -> Dict[str, str]:
        return dict(self._votes)

    def remove(self, player_id: str) -> None:
        self._votes.pop(player_id, None)

    def clear(self) -> None:
        self._votes.clear()


@dataclass
class FinisherList:
    """Ordered finishers of the current round, each at most once."""

    _order: List[str] = field(default_factory=list)
    _seen: Set[str] = field(default_factory=set)

    def add(self, player_id: str) -> bool:
        """Append a finisher. Returns False if they already finished."""
        if player_id in self._seen:
            return False
        self._seen.add(player_id)
        self._order.append(player_id)
        return True

    def has_finished(self, player_id: str) -> bool:
        return player_id in self._seen

    def rank(self, player_id: str) -> Optional[int]:
        """1-based finishing position, or None."""
        if player_id not in self._seen:
            return None
        return self._order.index(player_id) + 1

    def podium(self, size: int = 3) -> List[str]:
        """First finishers in order.

        Args:
            size: Number of podium places

        Returns:
            Up to ``size`` identities, fastest first
        """
        return self._order[:size]

    def ordered(self) -> List[str]:
        return list(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def clear(self) -> None:
        self._order.clear()
        self._seen.clear()


@dataclass
class RoundState:
    """Everything scoped to one round."""

    votes: PendingVotes = field(default_factory=PendingVotes)
    finishers: FinisherList = field(default_factory=FinisherList)
    ballot: List[str] = field(default_factory=list)
    round_num: int = 0

    def reset(self) -> None:
        """Clear votes, finishers and ballot, and start a new round number."""
        self.votes.clear()
        self.finishers.clear()
        self.ballot = []
        self.round_num += 1


def draw_ballot(catalog: Sequence[str], rng: RandomSource, size: int = 3) -> List[str]:
    """Draw the options offered in a voting phase.

    Args:
        catalog: Every known course type
        rng: Shared random source
        size: Maximum ballot length

    Returns:
        Up to ``size`` distinct options drawn without replacement
    """
    return rng.sample(catalog, min(size, len(catalog)))


def count_votes(options: Sequence[str], votes: Dict[str, str],
                excluded: Collection[str] = ()) -> Dict[str, int]:
    """Votes per offered option. Unlisted choices and excluded voters are dropped."""
    counts = {option: 0 for option in options}
    for player_id, choice in votes.items():
        if player_id in excluded or choice not in counts:
            continue
        counts[choice] += 1
    return counts


def tally_votes(options: Sequence[str], votes: Dict[str, str], rng: RandomSource,
                excluded: Collection[str] = ()) -> str:
    """Pick the winning option.

    A strictly highest count wins. Any tie, including nobody voting, is
    settled by a uniform draw over every offered option, not only the
    tied ones.

    Args:
        options: The ballot, in offered order
        votes: Latest vote per participant
        rng: Random source used for tie-breaks
        excluded: Voters whose votes do not count (away participants)

    Returns:
        The winning option

    Raises:
        ValueError: If ``options`` is empty
    """
    if not options:
        raise ValueError("cannot tally an empty ballot")
    counts = count_votes(options, votes, excluded)
    best = max(counts.values())
    leaders = [option for option, n in counts.items() if n == best]
    if best > 0 and len(leaders) == 1:
        return leaders[0]
    return rng.choice(list(options))
