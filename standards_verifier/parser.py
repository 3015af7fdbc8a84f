"""
Parse guidance documents into routing rules and verification blocks.

Documents are Markdown with two pseudo-XML block types embedded:

    <conditional-block task-condition="test|testing" context-check="testing">
    REQUEST: "Get testing standards from testing/testing.md#coverage"
    </conditional-block>

    <verification-block context-check="verification-testing">
      <test name="vitest_config_exists">
        TEST: test -f vitest.config.ts
        REQUIRED: true
        ERROR: "vitest.config.ts is missing"
        DESCRIPTION: "Vitest must be configured"
      </test>
    </verification-block>

Verification blocks are scanned cheaply first (id, raw body, fingerprint) so
the extractor can skip parsing ids it has already seen in the same run.
"""
import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import StructuralError
from .models import (
    ConditionalBlock, Document, DocumentCategory, TestDefinition,
    VerificationBlock,
)


CONDITIONAL_RE = re.compile(
    r"<conditional-block\b([^>]*)>(.*?)</conditional-block>", re.S
)
VERIFICATION_RE = re.compile(
    r"<verification-block\b([^>]*)>(.*?)</verification-block>", re.S
)
TEST_RE = re.compile(r"<test\b([^>]*)>(.*?)</test>", re.S)
ATTRIBUTE_RE = re.compile(r'([\w-]+)\s*=\s*"([^"]*)"')
FIELD_RE = re.compile(r"^\s*([A-Z][A-Z_]*):\s*(.*?)\s*$")
REQUEST_RE = re.compile(r'REQUEST:\s*"([^"]+)"')
REQUEST_TARGET_RE = re.compile(r"\sfrom\s+(\S+)\s*$")
HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")

KNOWN_FIELDS = {
    "TEST", "REQUIRED", "BLOCKING", "ERROR", "FIX_COMMAND",
    "DESCRIPTION", "DEPENDS_ON", "VARIABLES",
}
REQUIRED_FIELDS = ("TEST", "REQUIRED", "ERROR", "DESCRIPTION")


@dataclass
class RawBlock:
    """A verification block located in a document but not yet parsed"""
    context_check: str
    body: str
    line: int
    fingerprint: str


def line_of(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def fingerprint(body: str) -> str:
    """Content hash insensitive to indentation and line wrapping"""
    normalized = " ".join(body.split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def parse_attributes(raw: str) -> Dict[str, str]:
    return {key: value for key, value in ATTRIBUTE_RE.findall(raw)}


def slugify(heading: str) -> str:
    """GitHub-style anchor for a Markdown heading"""
    slug = heading.lower()
    slug = re.sub(r"[/_]", "-", slug)
    slug = re.sub(r"[`*~]", "", slug)
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug.strip())
    return re.sub(r"-+", "-", slug)


def extract_anchors(content: str) -> List[str]:
    anchors = []
    for line in content.splitlines():
        match = HEADING_RE.match(line.strip())
        if match:
            anchors.append(slugify(match.group(2).strip()))
    return anchors


def _detect_category(content: str) -> DocumentCategory:
    if re.search(r"Root Dispatcher", content, re.I):
        return DocumentCategory.ROOT_DISPATCHER
    if re.search(r"Category Dispatcher", content, re.I):
        return DocumentCategory.CATEGORY_DISPATCHER
    return DocumentCategory.STANDARD


def _detect_title(content: str) -> str:
    for line in content.splitlines():
        match = HEADING_RE.match(line.strip())
        if match and len(match.group(1)) == 1:
            return match.group(2).strip()
    return ""


def split_request(request: str) -> Optional[Tuple[str, Optional[str]]]:
    """
    Split 'Get X from path#anchor' into (path, anchor).

    Returns None for placeholder examples such as 'from [file].md'.
    Raises StructuralError when the phrasing has no ' from ' clause.
    """
    match = REQUEST_TARGET_RE.search(request)
    if not match:
        raise StructuralError(
            f"Non-conformant REQUEST phrasing (missing ' from '): \"{request}\""
        )
    reference = match.group(1)
    if "[" in reference:
        return None
    path, _, anchor = reference.partition("#")
    return path, (anchor.lower() or None)


def parse_conditional_blocks(content: str, source: Path) -> List[ConditionalBlock]:
    """Parse routing rules; one ConditionalBlock per REQUEST target"""
    routes = []
    for match in CONDITIONAL_RE.finditer(content):
        line = line_of(content, match.start())
        location = f"{source}:{line}"
        attrs = parse_attributes(match.group(1))
        condition = attrs.get("task-condition")
        if not condition:
            raise StructuralError(
                "conditional-block missing 'task-condition'", location=location
            )
        keywords = [k.strip() for k in condition.split("|") if k.strip()]
        body = match.group(2)
        if "<verification-block" in body:
            raise StructuralError(
                "conditional-block must not contain verification content",
                location=location,
            )

        requests = REQUEST_RE.findall(body)
        if not requests:
            raise StructuralError(
                "conditional-block has no REQUEST target", location=location
            )
        for request in requests:
            try:
                target = split_request(request)
            except StructuralError as e:
                raise StructuralError(str(e), location=location) from e
            if target is None:
                continue
            path, anchor = target
            routes.append(ConditionalBlock(
                keywords=keywords,
                target=path,
                anchor=anchor,
                context_check=attrs.get("context-check"),
                line=line,
            ))
    return routes


def scan_verification_blocks(content: str, source: Path) -> List[RawBlock]:
    """Locate verification blocks without parsing their tests"""
    blocks = []
    for match in VERIFICATION_RE.finditer(content):
        line = line_of(content, match.start())
        attrs = parse_attributes(match.group(1))
        context_check = attrs.get("context-check")
        if not context_check:
            raise StructuralError(
                "verification-block missing 'context-check'",
                location=f"{source}:{line}",
            )
        body = match.group(2)
        blocks.append(RawBlock(
            context_check=context_check,
            body=body,
            line=line,
            fingerprint=fingerprint(body),
        ))
    return blocks


def _strip_quotes(raw: str) -> str:
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        return raw[1:-1]
    return raw


def _parse_bool(raw: str, label: str, location: str) -> bool:
    value = _strip_quotes(raw).strip().lower()
    if value == "true":
        return True
    if value == "false":
        return False
    raise StructuralError(f"{label} must be true or false, got '{raw}'", location=location)


def _parse_list(raw: str, label: str, location: str) -> tuple:
    if not raw:
        return ()
    # BaseLoader keeps every scalar a string, so a test named "on" or "1" stays a name
    try:
        value: Any = yaml.load(raw, Loader=yaml.BaseLoader)
    except yaml.YAMLError as e:
        raise StructuralError(f"Invalid {label} list: {e}", location=location)
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",")]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise StructuralError(
            f"{label} must be a list of names, got '{raw}'", location=location
        )
    return tuple(v for v in value if v)


def parse_test(name: str, body: str, location: str) -> TestDefinition:
    """Parse the LABEL: value lines of one <test> element"""
    fields: Dict[str, str] = {}
    for raw_line in body.splitlines():
        match = FIELD_RE.match(raw_line)
        if not match:
            continue
        label, value = match.group(1), match.group(2)
        if label not in KNOWN_FIELDS:
            raise StructuralError(
                f"Unknown field '{label}' in test '{name}'", location=location
            )
        if label in fields:
            raise StructuralError(
                f"Duplicate field '{label}' in test '{name}'", location=location
            )
        fields[label] = value

    missing = [label for label in REQUIRED_FIELDS if not fields.get(label)]
    if missing:
        raise StructuralError(
            f"Test '{name}' missing required field(s): {', '.join(missing)}",
            location=location,
        )

    required = _parse_bool(fields["REQUIRED"], "REQUIRED", location)
    blocking = required
    if "BLOCKING" in fields:
        blocking = _parse_bool(fields["BLOCKING"], "BLOCKING", location)

    fix_command = _strip_quotes(fields["FIX_COMMAND"]) if fields.get("FIX_COMMAND") else None

    return TestDefinition(
        name=name,
        command=_strip_quotes(fields["TEST"]),
        required=required,
        blocking=blocking,
        error=_strip_quotes(fields["ERROR"]),
        description=_strip_quotes(fields["DESCRIPTION"]),
        fix_command=fix_command,
        depends_on=_parse_list(fields.get("DEPENDS_ON", ""), "DEPENDS_ON", location),
        variables=_parse_list(fields.get("VARIABLES", ""), "VARIABLES", location),
    )


def parse_verification_block(raw: RawBlock, source: Path) -> VerificationBlock:
    """Parse and validate the tests of a scanned block"""
    tests = []
    seen = set()
    for match in TEST_RE.finditer(raw.body):
        offset = raw.body.count("\n", 0, match.start())
        location = f"{source}:{raw.line + offset}"
        name = parse_attributes(match.group(1)).get("name")
        if not name:
            raise StructuralError("test element missing 'name'", location=location)
        if name in seen:
            raise StructuralError(
                f"Duplicate test name '{name}' in block '{raw.context_check}'",
                location=location,
            )
        seen.add(name)
        tests.append(parse_test(name, match.group(2), location))

    if not tests:
        raise StructuralError(
            f"verification-block '{raw.context_check}' contains no tests",
            location=f"{source}:{raw.line}",
        )

    return VerificationBlock(
        context_check=raw.context_check,
        tests=tests,
        source=source,
        fingerprint=raw.fingerprint,
    )


def parse_document(path: Path) -> Document:
    """
    Read a guidance document and parse its routing rules.

    Raises:
        StructuralError: If the file is missing or a routing block is malformed
    """
    path = Path(path)
    if not path.is_file():
        raise StructuralError(f"Document not found: {path}")
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise StructuralError(f"Could not read document {path}: {e}")

    _reject_nested_verification(content, path)

    return Document(
        path=path,
        category=_detect_category(content),
        title=_detect_title(content),
        routes=parse_conditional_blocks(content, path),
        content=content,
    )


def _reject_nested_verification(content: str, source: Path) -> None:
    """Routing rules never carry test content"""
    spans = [m.span() for m in CONDITIONAL_RE.finditer(content)]
    for match in VERIFICATION_RE.finditer(content):
        start = match.start()
        for span_start, span_end in spans:
            if span_start < start < span_end:
                raise StructuralError(
                    "verification-block nested inside conditional-block",
                    location=f"{source}:{line_of(content, start)}",
                )
