from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Set, Tuple

from stakeops.bags.thresholds import ThresholdTable
from stakeops.chain.reader import PinnedState
from stakeops.chain.types import AccountId, Bag, Balance, ListNode
from stakeops.errors import StructuralIntegrityError
from stakeops.events import BAG_VISITED, POPULATION_CHECKED, EventSink, emit
from stakeops.metrics import LIST_POPULATION, NODES_VISITED, inc_counter, set_gauge

DEFAULT_LIST_PALLET = "VoterList"


@dataclass(frozen=True)
class BagMembers:
    bag: Bag
    members: Tuple[ListNode, ...]

    @property
    def upper(self) -> Balance:
        return self.bag.upper

    def ids(self) -> List[AccountId]:
        return [n.id for n in self.members]


@dataclass
class TraversalResult:
    block_hash: str
    bags: List[BagMembers] = field(default_factory=list)
    total_nodes: int = 0
    population: Optional[int] = None
    complete: bool = False

    def nodes(self) -> Iterator[Tuple[BagMembers, ListNode]]:
        for bm in self.bags:
            for n in bm.members:
                yield bm, n


class BagTraversalEngine:
    """Walks every non-empty bag of the list pallet at one pinned block.

    Invariants enforced (each violation is a StructuralIntegrityError):
      - a bag's head and tail are both present or both absent
      - every non-empty bag's upper bound is in the threshold table
      - walking `next` from head ends at tail, without cycles, and every
        node's prev/bag_upper agree with the walk
      - no walk may visit more nodes than the on-chain population counter
      - after a complete walk, visited == CounterForListNodes
    """

    def __init__(
        self,
        state: PinnedState,
        thresholds: ThresholdTable,
        *,
        pallet: str = DEFAULT_LIST_PALLET,
        sink: Optional[EventSink] = None,
    ) -> None:
        self.state = state
        self.thresholds = thresholds
        self.pallet = pallet
        self.sink = sink
        self._population: Optional[int] = None

    def population(self) -> int:
        if self._population is None:
            raw = self.state.read(self.pallet, "CounterForListNodes")
            self._population = int(raw or 0)
        return self._population

    def load_bags(self) -> List[Bag]:
        bags: List[Bag] = []
        for key, value in self.state.read_entries(self.pallet, "ListBags"):
            bag = Bag.from_value(key, value)
            if not bag.is_consistent:
                raise StructuralIntegrityError(f"bag {bag.upper} has only one of head/tail", bag)
            if bag.is_empty:
                continue
            if not self.thresholds.contains(bag.upper):
                raise StructuralIntegrityError(f"bag upper {bag.upper} not found in thresholds", list(self.thresholds.thresholds))
            bags.append(bag)
        bags.sort(key=lambda b: b.upper)
        return bags

    def read_node(self, who: AccountId) -> Optional[ListNode]:
        raw = self.state.read(self.pallet, "ListNodes", [who])
        return None if raw is None else ListNode.from_value(raw)

    def walk_bag(self, bag: Bag, *, budget: int) -> BagMembers:
        """Follow `next` from head. `budget` is the most nodes this walk may visit."""
        members: List[ListNode] = []
        seen: Set[AccountId] = set()
        prev: Optional[AccountId] = None
        current: Optional[AccountId] = bag.head

        while current is not None:
            if current in seen:
                raise StructuralIntegrityError(f"cycle in bag {bag.upper} at {current}")
            if len(members) >= budget:
                raise StructuralIntegrityError(f"bag {bag.upper} walk exceeded population bound {budget}")
            node = self.read_node(current)
            if node is None:
                raise StructuralIntegrityError(f"bag {bag.upper} links to missing node {current}")
            if node.bag_upper != bag.upper:
                raise StructuralIntegrityError(
                    f"node {node.id} claims bag {node.bag_upper} but is linked from bag {bag.upper}"
                )
            if node.prev != prev:
                raise StructuralIntegrityError(f"node {node.id} prev is {node.prev}, expected {prev}")
            members.append(node)
            seen.add(current)
            prev = current
            current = node.next

        if not members or members[0].id != bag.head:
            raise StructuralIntegrityError(f"first node of bag {bag.upper} is not head {bag.head}")
        if members[-1].id != bag.tail:
            raise StructuralIntegrityError(
                f"last node {members[-1].id} not matching tail {bag.tail} in bag {bag.upper}"
            )

        inc_counter(NODES_VISITED, len(members))
        emit(self.sink, BAG_VISITED, upper=bag.upper, nodes=len(members), head=bag.head, tail=bag.tail)
        return BagMembers(bag=bag, members=tuple(members))

    def iter_bags(self, bags: Optional[Sequence[Bag]] = None) -> Iterator[BagMembers]:
        """Lazy walk, ascending by bag upper, over `bags` or every non-empty bag.

        Stopping early skips the population check.
        """
        population = self.population()
        visited = 0
        for bag in self.load_bags() if bags is None else bags:
            bm = self.walk_bag(bag, budget=population - visited)
            visited += len(bm.members)
            yield bm

    def traverse_all(self) -> TraversalResult:
        result = TraversalResult(block_hash=self.state.block_hash, population=self.population())
        for bm in self.iter_bags():
            result.bags.append(bm)
            result.total_nodes += len(bm.members)
        result.complete = True
        self.check_population(result)
        return result

    def check_population(self, result: TraversalResult) -> None:
        population = self.population()
        ok = result.total_nodes == population
        set_gauge(LIST_POPULATION, population)
        emit(
            self.sink,
            POPULATION_CHECKED,
            level=logging.INFO if ok else logging.ERROR,
            ok=ok,
            visited=result.total_nodes,
            counter=population,
        )
        if not ok:
            raise StructuralIntegrityError(
                f"visited {result.total_nodes} nodes but CounterForListNodes is {population}",
                {"block_hash": result.block_hash},
            )
