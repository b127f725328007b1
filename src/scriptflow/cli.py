# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""ScriptFlow CLI: optimize and inspect HTML documents.

Usage:
    python -m scriptflow.cli optimize PAGE.html [--config CONFIG.yaml] [--cache-dir DIR] [-o OUT.html] [--json]
    python -m scriptflow.cli inspect PAGE.html [--config CONFIG.yaml]
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .config import ScriptFlowConfig, load_config
from .errors import ScriptFlowError


def _require_cli_deps() -> None:
    """Check that CLI optional dependencies are installed."""
    try:
        import yaml  # noqa: F401
        from tabulate import tabulate  # noqa: F401
    except ImportError as e:
        print(
            f"Missing CLI dependency: {e.name}\nInstall with: pip install retio-scriptflow[cli]",
            file=sys.stderr,
        )
        sys.exit(1)


def _validate_output_path(path_str: str | None) -> Path | None:
    if not path_str:
        return None
    p = Path(path_str)
    p.parent.mkdir(parents=True, exist_ok=True)
    return p


def _load(args: argparse.Namespace) -> tuple[ScriptFlowConfig, str]:
    config = load_config(args.config) if args.config else ScriptFlowConfig()
    source = Path(args.input)
    try:
        document = source.read_text(encoding="utf-8")
    except OSError as e:
        raise ScriptFlowError(f"cannot read {source}: {e}") from e
    return config, document


def _client_config_tag(runtime_global: str, client: dict) -> str:
    payload = json.dumps(client, separators=(",", ":")).replace("</", "<\\/")
    return f'<script type="application/json" id="{runtime_global}-config">{payload}</script>'


def cmd_optimize(args: argparse.Namespace) -> None:
    """Rewrite a document and print (or save) the result."""
    _require_cli_deps()
    from .cache import FileContentCache
    from .pipeline import ScriptOptimizer
    from .rewriter import Anchor, Insertion, assemble_document

    config, document = _load(args)
    cache = FileContentCache(args.cache_dir, base_url=config.cache_url)
    with ScriptOptimizer(config, cache=cache) as optimizer:
        result = optimizer.process(document, document_id=Path(args.input).stem)

    if args.json:
        payload = {
            "document": result.document,
            "insertions": [{"anchor": str(i.anchor), "payload": i.payload} for i in result.insertions],
            "client": result.client,
            "errors": [str(e) for e in result.errors],
            "timings": result.timings,
        }
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    insertions = [Insertion(Anchor.CRITICAL, _client_config_tag(config.runtime_global, result.client)), *result.insertions]
    output = assemble_document(result.document, insertions)
    out_path = _validate_output_path(args.output)
    if out_path is None:
        sys.stdout.write(output)
    else:
        out_path.write_text(output, encoding="utf-8")
        print(f"Output: {out_path}", file=sys.stderr)
    for err in result.errors:
        print(f"warning: {err}", file=sys.stderr)


def cmd_inspect(args: argparse.Namespace) -> None:
    """List the scripts of a document and how they would be treated."""
    _require_cli_deps()
    from tabulate import tabulate

    from .cache import InMemoryContentCache
    from .extractor import extract_scripts
    from .pipeline import ScriptOptimizer

    config, document = _load(args)
    with ScriptOptimizer(config, cache=InMemoryContentCache(base_url=config.cache_url)) as optimizer:
        ctx = optimizer.new_context(Path(args.input).stem)
        scripts = extract_scripts(ctx, document)

    rows = []
    for n, ref in enumerate(scripts):
        rows.append(
            [
                n,
                str(ref.kind),
                str(ref)[:60],
                "yes" if ref.minify else "-",
                "yes" if ref.load_async else "-",
                str(ref.load_position or "-"),
                str(ref.async_exec.type) if ref.async_exec else "-",
            ]
        )
    headers = ["#", "Kind", "Source", "Minify", "Async", "Position", "Exec"]
    print(tabulate(rows, headers=headers, tablefmt="simple"))
    removed = len(ctx.replacements)
    if removed:
        print(f"\n{removed} tag(s) deleted by filters")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="ScriptFlow CLI", prog="python -m scriptflow.cli")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_opt = subparsers.add_parser("optimize", help="Rewrite the scripts of an HTML document")
    p_opt.add_argument("input", type=str, metavar="PAGE", help="HTML document")
    p_opt.add_argument("--config", type=str, metavar="YAML", help="Configuration file")
    p_opt.add_argument("--cache-dir", type=str, default=".scriptflow-cache", metavar="DIR", help="Artifact directory")
    p_opt.add_argument("-o", "--output", type=str, metavar="PATH", help="Write the document here instead of stdout")
    p_opt.add_argument("--json", action="store_true", help="Print the raw result as JSON")

    p_insp = subparsers.add_parser("inspect", help="List scripts and their resolved treatment")
    p_insp.add_argument("input", type=str, metavar="PAGE", help="HTML document")
    p_insp.add_argument("--config", type=str, metavar="YAML", help="Configuration file")

    commands = {"optimize": cmd_optimize, "inspect": cmd_inspect}
    args = parser.parse_args(argv)

    from .logging_config import configure

    configure(json_output=args.json_logs, level="DEBUG" if args.verbose else "WARNING")

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except ScriptFlowError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
