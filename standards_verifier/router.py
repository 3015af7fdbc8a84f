"""
Resolve the guidance documents relevant to a task.

Routing is a breadth-first walk over an explicit directed graph: each
document's conditional blocks are matched against the task keywords and
matching targets become edges. Cycles and depth overflow are structural
errors.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .errors import StructuralError
from .graph import find_cycle
from .models import Document
from .parser import extract_anchors, parse_document

logger = logging.getLogger(__name__)

MAX_DEPTH = 3


@dataclass
class RoutingResult:
    """Documents selected for a task, in traversal order"""
    entry: Optional[Path]
    documents: List[Document] = field(default_factory=list)
    graph: Dict[Path, List[Path]] = field(default_factory=dict)
    depths: Dict[Path, int] = field(default_factory=dict)

    @property
    def paths(self) -> List[Path]:
        return [doc.path for doc in self.documents]


def format_trail(trail: Iterable[Path], root: Optional[Path] = None) -> str:
    parts = []
    for path in trail:
        if root is not None:
            try:
                path = path.relative_to(root)
            except ValueError:
                pass
        parts.append(str(path))
    return " -> ".join(parts)


class Router:
    """
    Walks the routing hierarchy from an entry point.

    Args:
        standards_root: Base directory for REQUEST targets. Defaults to the
            entry point's directory.
        max_depth: Maximum hops from the entry point.
    """

    def __init__(self, standards_root: Optional[Path] = None, max_depth: int = MAX_DEPTH):
        self.standards_root = Path(standards_root).resolve() if standards_root else None
        self.max_depth = max_depth

    def route(self, entry: Path, task_keywords: List[str]) -> RoutingResult:
        """
        Produce the ordered documents relevant to the task keywords.

        Raises:
            StructuralError: On missing targets, cycles or depth overflow
        """
        entry = Path(entry).resolve()
        root = self.standards_root or entry.parent
        result = RoutingResult(entry=entry)

        loaded: Dict[Path, Document] = {entry: parse_document(entry)}
        trails: Dict[Path, List[Path]] = {entry: [entry]}
        route_ids: Dict[str, Path] = {}
        result.depths[entry] = 0
        queue = deque([entry])

        while queue:
            current = queue.popleft()
            document = loaded[current]
            result.documents.append(document)
            edges = result.graph.setdefault(current, [])
            depth = result.depths[current]

            for route in document.routes:
                if not route.matches(task_keywords):
                    continue
                location = f"{current}:{route.line}"
                target = (root / route.target).resolve()

                if route.context_check:
                    known = route_ids.setdefault(route.context_check, target)
                    if known != target:
                        raise StructuralError(
                            f"context-check '{route.context_check}' routes to both "
                            f"{format_trail([known], root)} and {format_trail([target], root)}",
                            location=location,
                        )

                if target == current:
                    raise StructuralError(
                        f"Document routes to itself: {format_trail([current], root)}",
                        location=location,
                    )
                if target not in edges:
                    edges.append(target)

                if target not in loaded:
                    if depth + 1 > self.max_depth:
                        trail = format_trail(trails[current] + [target], root)
                        raise StructuralError(
                            f"Routing depth exceeds {self.max_depth} hops: {trail}",
                            location=location,
                        )
                    try:
                        loaded[target] = parse_document(target)
                    except StructuralError as e:
                        raise StructuralError(
                            f"Missing REQUEST target: {e}", location=location
                        ) from e
                    trails[target] = trails[current] + [target]
                    result.depths[target] = depth + 1
                    queue.append(target)
                    logger.debug(
                        f"Routed {format_trail([current], root)} -> "
                        f"{format_trail([target], root)} via {route.keywords}"
                    )

                if route.anchor and route.anchor not in extract_anchors(loaded[target].content):
                    raise StructuralError(
                        f"Missing anchor '#{route.anchor}' in {format_trail([target], root)}",
                        location=location,
                    )

        cycle = find_cycle(result.graph)
        if cycle:
            raise StructuralError(f"Routing cycle detected: {format_trail(cycle, root)}")

        logger.info(
            f"Routing selected {len(result.documents)} document(s) from "
            f"{format_trail([entry], root)}"
        )
        return result

    def load(self, paths: Iterable[Path]) -> RoutingResult:
        """Use an explicit document list; no routing is performed"""
        result = RoutingResult(entry=None)
        seen = set()
        for path in paths:
            resolved = Path(path).resolve()
            if resolved in seen:
                continue
            seen.add(resolved)
            result.documents.append(parse_document(resolved))
            result.depths[resolved] = 0
        return result
