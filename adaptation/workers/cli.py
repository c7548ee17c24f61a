from __future__ import annotations

import json
import sys
from typing import Any

from adaptation.resolution.engine import ResolutionEngine
from adaptation.resolution.errors import ResolutionError
from adaptation.services.manifest_loader import apply_manifest, load_manifest
from adaptation.web.resolution_api import run_server

USAGE = (
    "Usage: python -m adaptation.workers.cli "
    "manifest:validate|resolve|explain|serve "
    "[--manifest PATH] [--subject ID] [--context JSON]"
)


def _get_opt(argv: list[str], key: str) -> str | None:
    if key not in argv:
        return None
    idx = argv.index(key)
    if idx + 1 >= len(argv):
        return None
    return argv[idx + 1]


def _print(obj: dict[str, Any]) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, default=str))


def _parse_context(argv: list[str]) -> dict[str, Any]:
    raw = _get_opt(argv, "--context")
    if not raw:
        return {}
    obj = json.loads(raw)
    if not isinstance(obj, dict):
        raise ValueError("--context must be a JSON object")
    return obj


def _engine_from_manifest(argv: list[str]) -> tuple[ResolutionEngine, str] | None:
    manifest = _get_opt(argv, "--manifest")
    subject = _get_opt(argv, "--subject")
    if not manifest or not subject:
        print("--manifest and --subject are required", file=sys.stderr)
        return None
    engine = ResolutionEngine()
    apply_manifest(engine, manifest)
    return engine, subject


def cmd_manifest_validate(argv: list[str]) -> int:
    manifest = _get_opt(argv, "--manifest")
    if not manifest:
        print("--manifest is required", file=sys.stderr)
        return 2
    definitions = load_manifest(manifest)
    _print(
        {
            "ok": True,
            "manifest": manifest,
            "validated": [
                {
                    "subject_id": d.subject_id,
                    "default": d.default_variant_name,
                    "variants": list(d.variants),
                }
                for d in definitions
            ],
        }
    )
    return 0


def cmd_resolve(argv: list[str]) -> int:
    loaded = _engine_from_manifest(argv)
    if loaded is None:
        return 2
    engine, subject = loaded
    result = engine.resolve(subject, _parse_context(argv))
    _print({"ok": True, "result": result.to_dict()})
    return 0


def cmd_explain(argv: list[str]) -> int:
    loaded = _engine_from_manifest(argv)
    if loaded is None:
        return 2
    engine, subject = loaded
    _print({"ok": True, "explain": engine.explain(subject, _parse_context(argv))})
    return 0


def cmd_serve(argv: list[str]) -> int:
    run_server(manifest_path=_get_opt(argv, "--manifest"))
    return 0


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print(USAGE, file=sys.stderr)
        return 2

    cmd = argv[0]
    tail = argv[1:]
    try:
        if cmd == "manifest:validate":
            return cmd_manifest_validate(tail)
        if cmd == "resolve":
            return cmd_resolve(tail)
        if cmd == "explain":
            return cmd_explain(tail)
        if cmd == "serve":
            return cmd_serve(tail)
        print(f"Unknown command: {cmd}", file=sys.stderr)
        return 2
    except ResolutionError as e:
        _print({"ok": False, "error_code": e.err.code, "error": str(e)})
        return 10
    except ValueError as e:
        _print({"ok": False, "error_code": "RESOLVE_900_BAD_ARGUMENT", "error": str(e)})
        return 2
    except Exception as e:  # pragma: no cover
        _print({"ok": False, "error_code": "RESOLVE_999_UNEXPECTED", "error": str(e)})
        return 12


if __name__ == "__main__":
    raise SystemExit(main())
