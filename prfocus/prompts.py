"""Prompt construction for pull request analysis."""

from __future__ import annotations

from collections.abc import Sequence

DEFAULT_MAX_LINES = 50000

SYSTEM_PROMPT = (
    "You are an expert code reviewer. You regroup the hunks of a pull request by logical change "
    "and answer with a single JSON object and nothing else."
)

_OUTPUT_SHAPE = """```json
{
  "summary": "A brief summary of the changes made in the PR",
  "changes": [
    {"label": "Key point 1 about the changes", "hunks": [{"file": "path/to/file", "diff": "RELEVANT_HUNK_IN_DIFF_FORMAT"}]},
    {"label": "Key point 2 about the changes", "hunks": [{"file": "path/to/file", "diff": "ANOTHER_RELEVANT_HUNK_IN_DIFF_FORMAT"}]}
  ]
}
```"""

_EXAMPLE = r"""```json
{
  "summary": "Refactored user authentication flow and improved error handling",
  "changes": [
    {
      "label": "User authentication refactor",
      "hunks": [
        {
          "file": "src/services/auth_service.py",
          "diff": "@@ -10,4 +10,4 @@ class AuthService:\n-    def authenticate(self, credentials):\n+    def login(self, credentials):\n         username, password = credentials\n         return self.validate_user(username, password)"
        }
      ]
    },
    {
      "label": "Improved error handling",
      "hunks": [
        {
          "file": "src/controllers/user_controller.py",
          "diff": "@@ -15,2 +15,4 @@ class UserController:\n     def process_form(self, form_data):\n+        if not self.validate_input(form_data):\n+            raise ValueError(\"Invalid form data\")\n         return self.submit(form_data)"
        }
      ]
    }
  ]
}
```"""


def limit_lines(text: str, max_lines: int = DEFAULT_MAX_LINES) -> str:
    if max_lines <= 0:
        return text
    return "\n".join(text.split("\n")[:max_lines])


def build_analysis_prompt(
    pr_description: str,
    changed_files: Sequence[str],
    file_changes: str,
    max_lines: int = DEFAULT_MAX_LINES,
) -> str:
    """Render the user prompt; ``file_changes`` is cut to its first ``max_lines`` lines."""
    changes = limit_lines(file_changes, max_lines)
    files = "\n".join(changed_files)
    return f"""You are an expert code reviewer analyzing a GitHub pull request.
Your goal is to re-organize the changes in the pull request so that logical changes are together regardless of which
file they occurred in.

## PR Description
{pr_description}

## Files Changed
{files}

## Code Changes
```
{changes}
```

Your analysis should be thorough but concise, focusing on the most important aspects of the code changes.
All hunks in the file changes should be included in the output.
Based on the above information, please output only a JSON object with the following structure:
{_OUTPUT_SHAPE}

For example:
{_EXAMPLE}
"""


def build_messages(
    pr_description: str,
    changed_files: Sequence[str],
    file_changes: str,
    max_lines: int = DEFAULT_MAX_LINES,
) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_analysis_prompt(pr_description, changed_files, file_changes, max_lines)},
    ]
