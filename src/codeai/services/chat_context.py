"""Repository context and system prompt for the editing assistant."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Sequence

from .github_client import GitHubClient

LOG = logging.getLogger("codeai.context")

IGNORED_PATTERNS = (
    "node_modules",
    ".lock",
    "lockb",
    ".git/",
    "dist/",
    ".next/",
    ".png",
    ".jpg",
    ".ico",
    ".svg",
    ".woff",
    ".ttf",
)
RELEVANT_EXTENSIONS = (".tsx", ".ts", ".jsx", ".js", ".css", ".html", ".json")
PRIORITY_FILES = ("package.json", "index.html", "tailwind.config.ts", "vite.config.ts", "tsconfig.json")


def select_context_files(all_files: Sequence[str], limit: int = 15) -> List[str]:
    """Config files first, then ``src/``, then everything else relevant."""
    candidates = []
    for path in all_files:
        if any(p in path for p in IGNORED_PATTERNS):
            continue
        if path in PRIORITY_FILES or path.endswith(RELEVANT_EXTENSIONS):
            candidates.append(path)
    priority = [f for f in candidates if f in PRIORITY_FILES]
    in_src = [f for f in candidates if f not in PRIORITY_FILES and f.startswith("src/")]
    rest = [f for f in candidates if f not in PRIORITY_FILES and not f.startswith("src/")]
    return (priority + in_src + rest)[:limit]


def read_context_files(
    github: GitHubClient,
    paths: Sequence[str],
    max_chars: int = 15000,
    max_workers: int = 5,
) -> Dict[str, str]:
    """Read ``paths`` concurrently, keeping files shorter than ``max_chars``."""
    if not paths:
        return {}
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        contents = list(pool.map(github.read_text, paths))
    kept: Dict[str, str] = {}
    for path, content in zip(paths, contents):
        if content and len(content) < max_chars:
            kept[path] = content
    LOG.info("context_files_read", extra={"requested": len(paths), "kept": len(kept)})
    return kept


def build_system_prompt(
    owner: str,
    repo: str,
    tree: Sequence[str],
    files: Dict[str, str],
    language: str = "English",
) -> str:
    tree_text = "\n".join(tree) if tree else "(could not list the repository files)"
    files_text = "\n\n".join(f"=== FILE: {path} ===\n{content}" for path, content in files.items())
    return f"""You are a senior full-stack engineer, expert in React, TypeScript, Tailwind CSS and modern web development.
Your job is to modify the code of the GitHub repository "{owner}/{repo}" as the user requests.

## FULL REPOSITORY STRUCTURE:
{tree_text}

## PROJECT FILE CONTENTS:
{files_text}

## MOST IMPORTANT RULE:
You MUST ALWAYS include a ```json block with the "files" array in your answer whenever the user asks for ANY change.
Without the JSON block NO change is applied.
Never answer with text only when a change was requested.

## CRITICAL RULES:

### 1. FILE PATHS:
- Use ONLY paths that exist in the list above.
- Never invent a path. If a file is not in the list, it does not exist.
- To create a new file, use action "create" and pick a sensible path inside the existing structure.
- To edit an existing file, use action "update" and the EXACT path from the list.

### 2. CONTENT:
- With action "update", provide the COMPLETE and FINAL file content, never a fragment or a diff.
- Keep all existing code that does not need to change.
- Keep imports and exports exactly as they are in the original file.
- Do not remove features unless the user explicitly asks.

### 3. ANSWER SHAPE:
- First explain in 1-2 SHORT sentences what you will do.
- Then immediately include the JSON block with the changes.
- Do not show code outside the JSON block. The system applies it automatically.

### 4. REQUIRED JSON FORMAT:
```json
{{
  "files": [
    {{
      "path": "exact/path/of/file.tsx",
      "content": "COMPLETE file content here",
      "action": "update"
    }}
  ]
}}
```

### 5. CODE QUALITY:
- Use Tailwind CSS for styling.
- Keep the code clean, organized and working.
- Make sure the code compiles and keeps correct TypeScript types.

### 6. ANALYSE BEFORE ACTING:
- Read every relevant file above before proposing changes.
- Check that imported components exist before using them.

### 7. IMAGES SENT BY THE USER:
- An image sent with a message is already hosted at a public URL included in the message.
- Use that URL DIRECTLY as the src of an <img> tag or as a CSS background-image. Never download or convert it.
- If the user sends an image without instructions, ask where it should go.
- Give images suitable Tailwind classes (object-cover, rounded, etc.).

Always answer in {language}. Be precise and efficient."""


def build_chat_context(
    github: GitHubClient,
    branch: str = "main",
    limit: int = 15,
    max_chars: int = 15000,
    language: str = "English",
) -> str:
    tree = github.fetch_tree(branch)
    files = read_context_files(github, select_context_files(tree, limit), max_chars=max_chars)
    return build_system_prompt(github.owner, github.repo, tree, files, language=language)
