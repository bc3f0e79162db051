"""
Write assembled artifacts to disk.

``write_artifact()`` returns the written ``Path``; parent directories are
created if missing.  Workbooks are written as raw bytes, previews as
pretty-printed UTF-8 JSON.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Union

from report_kit.reporting.assembler import Artifact


def write_artifact(artifact: Artifact, out_dir: Union[str, Path]) -> Path:
    """Write ``artifact`` into ``out_dir`` under ``artifact.filename``.

    Args:
        artifact: Output of ``ReportAssembler.assemble()``.
        out_dir:  Destination directory.

    Returns:
        Path of the written file.

    Raises:
        ValueError: If the artifact carries neither bytes nor a payload.
    """
    path = Path(out_dir) / artifact.filename
    path.parent.mkdir(parents=True, exist_ok=True)
    if artifact.content is not None:
        path.write_bytes(artifact.content)
    elif artifact.payload is not None:
        path.write_text(json.dumps(artifact.payload, indent=2, default=str), encoding="utf-8")
    else:
        raise ValueError(f"Artifact '{artifact.filename}' has no content to write.")
    return path
