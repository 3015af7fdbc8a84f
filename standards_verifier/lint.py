"""
Static validation of a whole standards tree.

Unlike a verification run, lint looks at every document and every routing
edge regardless of task keywords, and collects all problems instead of
stopping at the first one.
"""
import json
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

import jsonschema

from .errors import StructuralError
from .graph import find_cycle
from .models import Document
from .parser import (
    extract_anchors, parse_document, parse_verification_block,
    scan_verification_blocks,
)
from .policy import CommandPolicy
from .router import MAX_DEPTH, format_trail

logger = logging.getLogger(__name__)

CONTEXT_CHECK_RE = re.compile(r'context-check\s*=\s*"([^"]+)"')
LEXICON_PATH = Path("_meta") / "intent-lexicon.json"
ROOT_DISPATCHER = "standards.md"

LEXICON_SCHEMA = {
    "type": "object",
    "required": ["intents"],
    "properties": {
        "intents": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["key"],
                "properties": {
                    "key": {"type": "string", "minLength": 1},
                    "synonyms": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
    },
}

# Lines allowed in a pure dispatcher
DISPATCHER_LINE_RE = re.compile(
    r"^(<!--.*|-->|</?conditional-block.*|REQUEST:.*|</?context_fetcher_strategy>|</.+>|#\s.*)$"
)


@dataclass
class LintResult:
    """Problems found in a standards tree"""
    files: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class StandardsLinter:
    """
    Args:
        standards_root: Directory containing the standards Markdown files
        entry: Root dispatcher, relative to standards_root
    """

    def __init__(
        self,
        standards_root: Path,
        entry: str = ROOT_DISPATCHER,
        max_depth: int = MAX_DEPTH,
        policy: Optional[CommandPolicy] = None,
    ):
        self.root = Path(standards_root).resolve()
        self.entry = (self.root / entry).resolve()
        self.max_depth = max_depth
        self.policy = policy or CommandPolicy()

    def _rel(self, path: Path) -> str:
        return format_trail([path], self.root)

    def lint(self) -> LintResult:
        result = LintResult()
        if not self.root.is_dir():
            result.errors.append(f"Standards directory not found: {self.root}")
            return result

        files = sorted(self.root.rglob("*.md"))
        result.files = len(files)
        logger.info(f"Scanning {len(files)} Markdown files under {self.root}")

        documents: Dict[Path, Document] = {}
        for path in files:
            try:
                documents[path.resolve()] = parse_document(path)
            except StructuralError as e:
                result.errors.append(str(e))

        self._check_context_ids(files, result)
        graph = self._check_targets(documents, result)
        self._check_graph(graph, result)
        self._check_verification(documents, result)
        self._check_lexicon(documents, result)
        self._check_dispatcher_purity(documents, result)
        return result

    def _check_context_ids(self, files: List[Path], result: LintResult) -> None:
        first_seen: Dict[str, Path] = {}
        for path in files:
            content = path.read_text(encoding="utf-8", errors="replace")
            for match in CONTEXT_CHECK_RE.finditer(content):
                context_id = match.group(1)
                if context_id in first_seen:
                    result.errors.append(
                        f"Duplicate context-check id '{context_id}' in {self._rel(path)}; "
                        f"first seen in {self._rel(first_seen[context_id])}"
                    )
                else:
                    first_seen[context_id] = path

    def _check_targets(self, documents: Dict[Path, Document], result: LintResult) -> Dict[Path, List[Path]]:
        """Validate every route target and build the full routing graph"""
        graph: Dict[Path, List[Path]] = {}
        anchors: Dict[Path, List[str]] = {}
        for path, document in documents.items():
            edges = graph.setdefault(path, [])
            for route in document.routes:
                target = (self.root / route.target).resolve()
                if not target.is_file():
                    result.errors.append(
                        f"Missing REQUEST target '{self._rel(target)}' "
                        f"referenced from {self._rel(path)}"
                    )
                    continue
                if route.anchor:
                    if target not in anchors:
                        anchors[target] = extract_anchors(
                            target.read_text(encoding="utf-8", errors="replace")
                        )
                    if route.anchor not in anchors[target]:
                        result.errors.append(
                            f"Missing anchor '#{route.anchor}' in {self._rel(target)} "
                            f"referenced from {self._rel(path)}"
                        )
                if target == path:
                    result.errors.append(f"Document routes to itself: {self._rel(path)}")
                elif target not in edges:
                    edges.append(target)
        return graph

    def _check_graph(self, graph: Dict[Path, List[Path]], result: LintResult) -> None:
        cycle = find_cycle(graph)
        if cycle:
            result.errors.append(f"Routing cycle detected: {format_trail(cycle, self.root)}")

        if self.entry not in graph:
            result.warnings.append(f"Root dispatcher not found: {self._rel(self.entry)}")
            return

        depth = {self.entry: 0}
        queue = deque([self.entry])
        while queue:
            current = queue.popleft()
            for target in graph.get(current, []):
                if target not in depth:
                    depth[target] = depth[current] + 1
                    queue.append(target)

        for path, hops in sorted(depth.items()):
            if hops > self.max_depth:
                result.errors.append(
                    f"Routing depth exceeds {self.max_depth} hops from root: "
                    f"{self._rel(path)} (depth={hops})"
                )

    def _check_verification(self, documents: Dict[Path, Document], result: LintResult) -> None:
        for path, document in documents.items():
            try:
                raw_blocks = scan_verification_blocks(document.content, path)
            except StructuralError as e:
                result.errors.append(str(e))
                continue
            for raw in raw_blocks:
                try:
                    block = parse_verification_block(raw, path)
                except StructuralError as e:
                    result.errors.append(str(e))
                    continue
                for test in block.tests:
                    rule = self.policy.violation(test.command)
                    if rule:
                        result.errors.append(
                            f"Governance violation ({rule}) in TEST command at "
                            f"{self._rel(path)} [{test.name}]: '{test.command}'"
                        )

    def _load_lexicon(self) -> Optional[Set[str]]:
        path = self.root / LEXICON_PATH
        if not path.exists():
            return None
        lexicon = json.loads(path.read_text(encoding="utf-8"))
        jsonschema.validate(lexicon, LEXICON_SCHEMA)
        allowed = set()
        for intent in lexicon["intents"]:
            allowed.add(intent["key"].lower())
            for synonym in intent.get("synonyms", []):
                allowed.add(synonym.lower())
        return allowed

    def _check_lexicon(self, documents: Dict[Path, Document], result: LintResult) -> None:
        try:
            allowed = self._load_lexicon()
        except jsonschema.ValidationError as e:
            error_path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "root"
            result.errors.append(f"Invalid intent lexicon at {error_path}: {e.message}")
            return
        except (OSError, ValueError) as e:
            result.errors.append(f"Failed to load intent lexicon: {e}")
            return
        if allowed is None:
            return
        for path, document in documents.items():
            if not document.is_dispatcher and path != self.entry:
                continue
            unknown = set()
            for route in document.routes:
                for keyword in route.keywords:
                    if keyword.lower() not in allowed:
                        unknown.add(keyword.lower())
            for keyword in sorted(unknown):
                result.errors.append(
                    f"Unknown task-condition keyword '{keyword}' in {self._rel(path)} "
                    f"(not in lexicon)"
                )

    def _check_dispatcher_purity(self, documents: Dict[Path, Document], result: LintResult) -> None:
        for path, document in documents.items():
            if not document.is_dispatcher:
                continue
            for number, line in enumerate(document.content.splitlines(), start=1):
                stripped = line.strip()
                if stripped and not DISPATCHER_LINE_RE.match(stripped):
                    result.warnings.append(
                        f"Possible non-routing content in dispatcher {self._rel(path)} "
                        f"at line {number}: '{stripped[:60]}'"
                    )
