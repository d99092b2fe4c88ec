"""Print the tools synthesized from an OpenAPI document."""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from openapi_tool_proxy.errors import ProxyError
from openapi_tool_proxy.openapi import load_spec
from openapi_tool_proxy.tool_registry import ToolRegistry


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--spec",
        default=os.getenv("OPENAPI_SPEC_PATH", ""),
        help="OpenAPI JSON document (default: OPENAPI_SPEC_PATH)",
    )
    parser.add_argument(
        "--allow",
        default=os.getenv("OPERATION_ALLOWLIST", ""),
        help="Comma separated tool names or operationIds to keep",
    )
    parser.add_argument(
        "--schemas",
        action="store_true",
        help="Include each tool's input schema",
    )

    args = parser.parse_args()
    if not args.spec:
        raise SystemExit("Spec path missing. Set --spec or OPENAPI_SPEC_PATH.")

    spec_path = Path(args.spec).expanduser().resolve()
    if not spec_path.exists():
        raise SystemExit(f"Spec file not found: {spec_path}")

    allowlist = {item.strip() for item in args.allow.split(",") if item.strip()}
    try:
        document = load_spec(spec_path)
        registry = ToolRegistry.from_document(document, allowlist=allowlist)
    except ProxyError as exc:
        print(exc.render(), file=sys.stderr)
        raise SystemExit(2) from exc

    for descriptor in registry.list_tools():
        binding = registry.get_binding(descriptor.name)
        required = ", ".join(sorted(binding.required))
        print(f"{descriptor.name}: {binding.method} {binding.path}  required=[{required}]")
        if args.schemas:
            print(json.dumps(descriptor.input_schema, indent=2))

    print(f"{len(registry)} tools from {len(document.operations)} operations")


if __name__ == "__main__":
    main()
