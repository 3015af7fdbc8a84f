"""
Extract verification blocks from routed documents.

Blocks are deduplicated by context-check id through an ExtractionCache that
lives for exactly one run. A repeated id with identical content is reused
without re-parsing; a repeated id with different content is ambiguous and
aborts the batch.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .errors import StructuralError
from .models import Document, VerificationBlock
from .parser import parse_verification_block, scan_verification_blocks
from .policy import CommandPolicy

logger = logging.getLogger(__name__)


@dataclass
class ExtractionCache:
    """Per-run cache of parsed blocks keyed by context-check id"""
    blocks: Dict[str, VerificationBlock] = field(default_factory=dict)
    parse_counts: Dict[str, int] = field(default_factory=dict)

    def get(self, context_check: str) -> Optional[VerificationBlock]:
        return self.blocks.get(context_check)

    def add(self, block: VerificationBlock) -> None:
        self.blocks[block.context_check] = block
        self.parse_counts[block.context_check] = (
            self.parse_counts.get(block.context_check, 0) + 1
        )

    def __contains__(self, context_check: str) -> bool:
        return context_check in self.blocks

    def __len__(self) -> int:
        return len(self.blocks)


class Extractor:
    """
    Scans documents for verification blocks.

    Args:
        policy: Governance policy applied to every TEST template
        cache: Run-scoped cache; a fresh one is created when omitted
    """

    def __init__(
        self,
        policy: Optional[CommandPolicy] = None,
        cache: Optional[ExtractionCache] = None,
    ):
        self.policy = policy or CommandPolicy()
        self.cache = cache if cache is not None else ExtractionCache()

    def extract(self, documents: Iterable[Document]) -> List[VerificationBlock]:
        """
        Return deduplicated blocks in document order.

        Raises:
            StructuralError: On malformed blocks, ambiguous ids or
                governance violations
        """
        extracted: List[VerificationBlock] = []
        emitted = set()

        for document in documents:
            for raw in scan_verification_blocks(document.content, document.path):
                location = f"{document.path}:{raw.line}"
                cached = self.cache.get(raw.context_check)

                if cached is not None:
                    if cached.fingerprint != raw.fingerprint:
                        raise StructuralError(
                            f"Ambiguous context-check id '{raw.context_check}': "
                            f"declared with different content in {cached.source} "
                            f"and {document.path}",
                            location=location,
                        )
                    logger.debug(f"Reusing cached block '{raw.context_check}'")
                    block = cached
                else:
                    block = parse_verification_block(raw, document.path)
                    for test in block.tests:
                        self.policy.check(test.command, location=f"{location} [{test.name}]")
                    self.cache.add(block)

                if block.context_check not in emitted:
                    emitted.add(block.context_check)
                    extracted.append(block)

        logger.info(
            f"Extracted {len(extracted)} verification block(s) with "
            f"{sum(len(b.tests) for b in extracted)} test(s)"
        )
        return extracted
