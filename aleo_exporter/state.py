"""
Node state records

NodeState is one fully decoded snapshot of a node (or of one channel of a
node). ScrapeResult is the outcome of a single scrape: either the decoded
states or the error that prevented them.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import FetchError

# Blocks mined below this height are reported as "calibrate" blocks
BLOCKS_MINED_THRESHOLD = 18000


@dataclass(frozen=True)
class NodeState:
    """Decoded node status; built only from a complete payload"""

    node_type: str
    status: str
    connected_sync_nodes: int
    connected_peers: int
    candidate_peers: int
    cumulative_weight: int
    latest_block_height: int
    blocks_mined_before_threshold: int
    blocks_mined_after_threshold: int
    channel: Optional[str] = None


@dataclass(frozen=True)
class ScrapeResult:
    """
    Result of one scrape.

    Exactly one of ``states`` and ``cause`` is set. Use ``ScrapeResult.up()``
    and ``ScrapeResult.down()`` rather than the constructor.
    """

    states: Optional[Tuple[NodeState, ...]] = None
    cause: Optional[FetchError] = None

    def __post_init__(self):
        if (self.states is None) == (self.cause is None):
            raise ValueError("ScrapeResult needs exactly one of states or cause")
        if self.states is not None and not self.states:
            raise ValueError("ScrapeResult.up() needs at least one node state")

    @classmethod
    def up(cls, states) -> 'ScrapeResult':
        return cls(states=tuple(states))

    @classmethod
    def down(cls, cause: FetchError) -> 'ScrapeResult':
        return cls(cause=cause)

    @property
    def is_up(self) -> bool:
        return self.states is not None

    @property
    def channelized(self) -> bool:
        return self.is_up and self.states[0].channel is not None
