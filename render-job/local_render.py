#!/usr/bin/env python3
import argparse
import json
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Any
from uuid import uuid4

from edl_renderer import EDLRenderer, RendererConfig


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render a local EDL without uploading")
    parser.add_argument(
        "--edl",
        default=os.environ.get("RENDER_EDL", ""),
        help="Path to an EDL JSON file whose asset sources are local paths or URLs",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("RENDER_OUTPUT_DIR", ""),
        help="Directory for rendered outputs",
    )
    parser.add_argument(
        "--use-gpu",
        action="store_true",
        help="Allow NVENC encoding when the EDL also enables it",
    )
    parser.add_argument(
        "--keep-work-dir",
        action="store_true",
        help="Keep intermediate segments next to the output",
    )
    return parser.parse_args(argv)


def slugify_filename(name: str) -> str:
    base = re.sub(r"\s+", "_", name.strip())
    base = re.sub(r"[^A-Za-z0-9._-]", "", base)
    return base or "render"


def resolve_local_sources(edl: dict[str, Any], base_dir: Path) -> dict[str, Any]:
    """Make relative asset sources absolute against the EDL's directory."""
    resolved = json.loads(json.dumps(edl))
    for asset in (resolved.get("assets") or {}).values():
        source = str(asset.get("source") or "")
        if not source or "://" in source:
            continue
        path = Path(source)
        if not path.is_absolute():
            asset["source"] = str((base_dir / path).resolve())
    return resolved


def render_edl_file(
    edl_path: Path,
    output_dir: Path,
    use_gpu: bool = False,
    keep_work_dir: bool = False,
) -> Path:
    edl = resolve_local_sources(
        json.loads(edl_path.read_text(encoding="utf-8")), edl_path.parent
    )
    job_id = f"local-{uuid4().hex[:8]}"
    work_dir = output_dir / f".work_{job_id}"
    config = RendererConfig(
        job_id=job_id,
        edl_path=str(edl_path),
        bucket_name="local",
        work_dir=work_dir,
        use_gpu=use_gpu,
    )

    renderer = EDLRenderer(edl, config)
    try:
        result = renderer.render()
        output_path = output_dir / (
            f"{slugify_filename(edl_path.stem)}_{'gpu' if use_gpu else 'cpu'}"
            f"{result.output_path.suffix}"
        )
        shutil.move(str(result.output_path), output_path)
    finally:
        if not keep_work_dir:
            renderer.cleanup()
    return output_path


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = parse_args()

    if not args.edl:
        raise SystemExit("--edl is required (or set RENDER_EDL)")
    if not args.output_dir:
        raise SystemExit("--output-dir is required (or set RENDER_OUTPUT_DIR)")

    edl_path = Path(args.edl).resolve()
    output_dir = Path(args.output_dir).resolve()

    if not edl_path.exists():
        raise SystemExit(f"EDL file not found: {edl_path}")

    output_dir.mkdir(parents=True, exist_ok=True)

    output_path = render_edl_file(edl_path, output_dir, args.use_gpu, args.keep_work_dir)
    print(f"Rendered {edl_path.name} -> {output_path}")


if __name__ == "__main__":
    main()
