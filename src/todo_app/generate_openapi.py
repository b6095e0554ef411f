"""
Utility script to generate and write the OpenAPI schema for the FastAPI app.

Builds the application through create_app() and serializes its OpenAPI schema
to interfaces/openapi.json so that API clients and documentation tools can
consume a stable schema without running the server.

Usage:
    python -m todo_app.generate_openapi [output_dir]

Notes:
- Every tag in main.openapi_tags is present in the written schema.
- Output defaults to ./interfaces/openapi.json relative to the working directory.
"""
from __future__ import annotations

import json
import os
import sys
from typing import Any, Dict, List, Optional

from .main import create_app, openapi_tags


def _ensure_tags(schema: Dict[str, Any]) -> None:
    """
    Add any tag from openapi_tags missing in the schema. Existing tag
    definitions are left untouched.
    """
    existing_tags: List[Dict[str, Any]] = schema.get("tags", []) or []
    existing_names = {t.get("name") for t in existing_tags if isinstance(t, dict)}
    for tag in openapi_tags:
        if tag.get("name") not in existing_names:
            existing_tags.append(tag)
    if existing_tags:
        schema["tags"] = existing_tags


# PUBLIC_INTERFACE
def generate_openapi(output_dir: Optional[str] = None) -> str:
    """Generate the OpenAPI schema file and return the written file path."""
    schema = create_app().openapi()
    _ensure_tags(schema)

    interfaces_dir = output_dir or os.path.join(os.getcwd(), "interfaces")
    os.makedirs(interfaces_dir, exist_ok=True)
    out_path = os.path.join(interfaces_dir, "openapi.json")

    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(schema, f, indent=2, ensure_ascii=False)
    return out_path


def main() -> None:
    out_path = generate_openapi(sys.argv[1] if len(sys.argv) > 1 else None)
    print(f"Wrote OpenAPI schema to: {out_path}")


if __name__ == "__main__":
    main()
