"""Template loading for superego prompts and injected context.

Templates are markdown files with optional YAML frontmatter, shipped in
`superego/templates/`. A project can replace the evaluator prompt by placing
its own `.superego/prompt.md`.
"""

from __future__ import annotations

from pathlib import Path

from superego.paths import get_prompt_file

TEMPLATES_DIR = Path(__file__).parent / "templates"
DEFAULT_PROMPT_TEMPLATE = TEMPLATES_DIR / "default_prompt.md"
CONTRACT_TEMPLATE = TEMPLATES_DIR / "contract.md"


def load_template(template_path: Path, variables: dict[str, str] | None = None) -> str:
    """Load template, strip frontmatter and optionally format with variables.

    Raises:
        FileNotFoundError: If template file doesn't exist
        KeyError: If template references variable not in variables dict
    """
    if not template_path.exists():
        raise FileNotFoundError(f"Template not found: {template_path}")

    content = _strip_frontmatter(template_path.read_text(encoding="utf-8"))
    if variables:
        content = content.format(**variables)
    return content


def _strip_frontmatter(content: str) -> str:
    """Strip a leading ---/--- frontmatter block. Later --- rules are preserved."""
    if not content.startswith("---"):
        return content.strip()

    first_newline = content.find("\n")
    if first_newline == -1:
        return content.strip()
    rest = content[first_newline + 1 :]
    closing_idx = rest.find("\n---\n")
    if closing_idx == -1:
        return content.strip()
    return rest[closing_idx + 5 :].strip()


def load_system_prompt(superego_dir: Path) -> str:
    """The evaluator system prompt: the project's prompt.md, else the built-in one."""
    project_prompt = get_prompt_file(superego_dir)
    if project_prompt.exists():
        return load_template(project_prompt)
    return load_template(DEFAULT_PROMPT_TEMPLATE)


def render_contract(phase: str, approved_scope: str | None) -> str:
    scope_line = f" (approved scope: {approved_scope})" if approved_scope else ""
    return load_template(CONTRACT_TEMPLATE, {"phase": phase.upper(), "scope_line": scope_line})
