"""Review prompt construction.

The builder is pure: it never truncates the diff and never calls the model.
Whether an oversized prompt is sent, split, or reported as an error is the
orchestrator's decision.
"""

from __future__ import annotations

import json

# Models may wrap chain-of-thought in <think>...</think>; the parser strips it.
REASONING_TAG = "think"

RESPONSE_EXAMPLE: list[dict] = [
    {
        "file": "src/index.html",
        "line": 23,
        "comment": "The <script> tag is missing a closing tag.",
        "severity": 3,
        "proposedAdjustment": {
            "originalCode": '<script src="app.js">',
            "adjustedCode": '<script src="app.js"></script>',
            "description": "Close the <script> tag so the rest of the page is not treated as script.",
        },
    },
    {
        "file": "src/js/main.js",
        "line": 43,
        "comment": "`userInput` is passed to `eval()`, which allows arbitrary code execution.",
        "severity": 5,
    },
    {
        "file": "src/js/main.js",
        "line": 128,
        "comment": "Typo in variable name: `recieve` should be `receive`.",
        "severity": 1,
    },
]

_DIFF_FORMAT = """<Diff Format>
- The diff starts with a diff header, followed by diff lines.
- Diff lines have the format `<LINE NUMBER><TAB><DIFF TYPE><LINE>`.
- Lines with DIFF TYPE `+` are added.
- Lines with DIFF TYPE `-` are removed. (LINE NUMBER will be 0)
- Lines with DIFF TYPE ` ` are unchanged and provided for context.
</Diff Format>"""

_REVIEW_RULES = """- Provide comments on bugs, security vulnerabilities, code smells, and typos.
- Only provide comments for added lines.
- All comments must be actionable. Do not provide comments that are only positive feedback.
- Do not provide comments on formatting.
- Avoid repetitive comments.
- Do not make assumptions about code that is not included in the diff."""

_OUTPUT_RULES = """<Output Rules>
- Respond with a JSON list of comment objects, which contain the fields `file`, `line`, `comment`, `severity`, and optionally `proposedAdjustment`.
`file` is the path of the file, taken from the diff header.
`comment` is a string describing the issue.
`line` is the first affected LINE NUMBER.
`severity` is the severity of the issue as an integer from 1 (likely irrelevant) to 5 (critical).
`proposedAdjustment` (optional) is an object with proposed code changes containing:
  - `originalCode`: The original code block that needs to be changed
  - `adjustedCode`: The proposed code block replacement
  - `description`: Explanation of the change
  - `startLine` (optional): Start line for the replacement (if different from comment line)
  - `endLine` (optional): End line for the replacement (if different from comment line)
- Include `proposedAdjustment` when you can provide a specific, actionable code fix for the identified issue.
- Respond with only JSON, do NOT include other text or markdown.
</Output Rules>"""  # noqa: E501


def build_review_prompt(diff: str, custom_rules: str = "", change_description: str | None = None) -> str:
    """Compose the full review prompt for one formatted diff.

    ``custom_rules`` is appended verbatim to the fixed rule set.
    ``change_description`` (e.g. a PR body or commit message) is included
    only when non-empty.
    """
    rules = _REVIEW_RULES
    if custom_rules and custom_rules.strip():
        rules += "\n" + custom_rules.strip()

    description_block = ""
    if change_description and change_description.strip():
        description_block = f"<Change Description>\n{change_description.strip()}\n</Change Description>\n\n"

    example = json.dumps(RESPONSE_EXAMPLE, indent=2)

    return f"""You are a senior software engineer reviewing a pull request. Analyze the following git diff for the changed files.

{_DIFF_FORMAT}

<Review Rules>
{rules}
</Review Rules>

{_OUTPUT_RULES}

<Output Example>
```json
{example}
```
</Output Example>

{description_block}<Diff>
{diff}
</Diff>
"""  # noqa: E501
