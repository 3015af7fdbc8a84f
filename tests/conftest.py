"""
Shared fixtures for standards verifier tests.

StandardsDir writes guidance documents into a temporary standards tree and
builds the pseudo-XML blocks they contain.
"""
from pathlib import Path
from typing import List, Optional

import pytest


class StandardsDir:
    """Temporary standards tree plus a project directory to verify"""

    def __init__(self, base: Path):
        self.root = base / "standards"
        self.project = base / "project"
        self.root.mkdir()
        self.project.mkdir()

    def write(self, relative: str, content: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    def project_file(self, relative: str, content: str = "") -> Path:
        path = self.project / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    @staticmethod
    def test(
        name: str,
        command: str,
        required: bool = True,
        blocking: Optional[bool] = None,
        error: Optional[str] = None,
        description: Optional[str] = None,
        fix_command: Optional[str] = None,
        depends_on: Optional[List[str]] = None,
        variables: Optional[List[str]] = None,
    ) -> str:
        lines = [
            f'  <test name="{name}">',
            f"    TEST: {command}",
            f"    REQUIRED: {'true' if required else 'false'}",
        ]
        if blocking is not None:
            lines.append(f"    BLOCKING: {'true' if blocking else 'false'}")
        lines.append(f'    ERROR: "{error or name + " failed"}"')
        if fix_command:
            lines.append(f"    FIX_COMMAND: {fix_command}")
        lines.append(f'    DESCRIPTION: "{description or "Checks " + name}"')
        if depends_on:
            lines.append(f"    DEPENDS_ON: [{', '.join(depends_on)}]")
        if variables:
            lines.append(f"    VARIABLES: [{', '.join(variables)}]")
        lines.append("  </test>")
        return "\n".join(lines)

    @staticmethod
    def block(context_check: str, *tests: str) -> str:
        body = "\n".join(tests)
        return (
            f'<verification-block context-check="{context_check}">\n'
            f"{body}\n"
            f"</verification-block>\n"
        )

    @staticmethod
    def route(keywords: str, target: str, context_check: Optional[str] = None) -> str:
        context = f' context-check="{context_check}"' if context_check else ""
        return (
            f'<conditional-block task-condition="{keywords}"{context}>\n'
            f'REQUEST: "Get {keywords} standards from {target}"\n'
            f"</conditional-block>\n"
        )


@pytest.fixture
def standards(tmp_path):
    return StandardsDir(tmp_path)
