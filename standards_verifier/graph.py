"""
Dependency ordering for tests in a batch.

Tests are keyed "<context-check>/<name>". A DEPENDS_ON name resolves to the
sibling test in the same block first, then to the only test with that name
elsewhere in the batch. Anything else is a structural error.
"""
import heapq
from typing import Dict, Hashable, List, Mapping, Optional, Sequence, Set

from .errors import StructuralError
from .models import ScheduledTest, TestStatus, VerificationBlock

# Prerequisite outcomes that cause dependents to be skipped
UNSATISFIED = (TestStatus.FAIL, TestStatus.SKIPPED, TestStatus.BLOCKED)


def find_cycle(graph: Mapping[Hashable, Sequence[Hashable]]) -> Optional[List[Hashable]]:
    """Return one cycle as a closed path (first == last), or None"""
    white, gray, black = 0, 1, 2
    color: Dict[Hashable, int] = {node: white for node in graph}
    for targets in graph.values():
        for target in targets:
            color.setdefault(target, white)

    def visit(node, stack: List) -> Optional[List]:
        color[node] = gray
        stack.append(node)
        for target in graph.get(node, ()):
            if color[target] == gray:
                return stack[stack.index(target):] + [target]
            if color[target] == white:
                cycle = visit(target, stack)
                if cycle:
                    return cycle
        stack.pop()
        color[node] = black
        return None

    for node in list(color):
        if color[node] == white:
            cycle = visit(node, [])
            if cycle:
                return cycle
    return None


def make_key(context_check: str, name: str) -> str:
    return f"{context_check}/{name}"


class DependencyGraph:
    """Directed prerequisite graph over one extraction batch"""

    def __init__(self, blocks: Sequence[VerificationBlock]):
        self.tests: Dict[str, ScheduledTest] = {}
        self._index: Dict[str, int] = {}
        self._dependents: Dict[str, List[str]] = {}
        self._build(blocks)

    def _build(self, blocks: Sequence[VerificationBlock]) -> None:
        by_name: Dict[str, List[str]] = {}
        for block in blocks:
            for test in block.tests:
                key = make_key(block.context_check, test.name)
                self._index[key] = len(self.tests)
                self.tests[key] = ScheduledTest(
                    key=key,
                    context_check=block.context_check,
                    test=test,
                    source=block.source,
                )
                self._dependents[key] = []
                by_name.setdefault(test.name, []).append(key)

        for key, scheduled in self.tests.items():
            for dependency in scheduled.test.depends_on:
                sibling = make_key(scheduled.context_check, dependency)
                if sibling in self.tests:
                    target = sibling
                elif len(by_name.get(dependency, [])) == 1:
                    target = by_name[dependency][0]
                elif dependency in by_name:
                    raise StructuralError(
                        f"Test '{key}' depends on ambiguous name '{dependency}' "
                        f"(candidates: {', '.join(by_name[dependency])})"
                    )
                else:
                    raise StructuralError(
                        f"Test '{key}' depends on '{dependency}', "
                        f"which is not in this batch"
                    )
                if target not in scheduled.prerequisites:
                    scheduled.prerequisites.append(target)
                    self._dependents[target].append(key)

    def __len__(self) -> int:
        return len(self.tests)

    def order(self) -> List[ScheduledTest]:
        """
        Stable topological order; ties keep extraction order.

        Raises:
            StructuralError: If the prerequisites form a cycle
        """
        remaining = {key: len(t.prerequisites) for key, t in self.tests.items()}
        ready = [(self._index[key], key) for key, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        ordered = []
        while ready:
            _, key = heapq.heappop(ready)
            ordered.append(self.tests[key])
            for dependent in self._dependents[key]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, (self._index[dependent], dependent))

        if len(ordered) != len(self.tests):
            graph = {key: t.prerequisites for key, t in self.tests.items()}
            cycle = find_cycle(graph) or sorted(k for k, c in remaining.items() if c)
            raise StructuralError(f"Dependency cycle detected: {' -> '.join(cycle)}")
        return ordered

    def dependents(self, key: str) -> List[str]:
        return list(self._dependents.get(key, []))

    def transitive_dependents(self, key: str) -> Set[str]:
        found: Set[str] = set()
        stack = list(self._dependents.get(key, []))
        while stack:
            current = stack.pop()
            if current not in found:
                found.add(current)
                stack.extend(self._dependents.get(current, []))
        return found

    def is_ready(self, key: str, statuses: Mapping[str, TestStatus]) -> bool:
        """All prerequisites have reached a terminal status"""
        return all(p in statuses for p in self.tests[key].prerequisites)

    def unsatisfied_prerequisite(
        self, key: str, statuses: Mapping[str, TestStatus]
    ) -> Optional[str]:
        """First prerequisite that failed, was skipped or blocked"""
        for prerequisite in self.tests[key].prerequisites:
            if statuses.get(prerequisite) in UNSATISFIED:
                return prerequisite
        return None
