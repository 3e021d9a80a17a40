"""Metadata descriptor files written next to each uploaded item."""

import json
from pathlib import Path


def build_image_url(prefix: str, cid: str) -> str:
    """Image URL stored in the descriptor: the prefix followed by the CID."""
    return f"{prefix}{cid}"


def write_metadata(output_dir: str | Path, stem: str, image_url: str) -> Path:
    """Write ``<output_dir>/<stem>.json`` containing ``{"image": image_url}``.

    Args:
        output_dir: Existing directory for descriptor files
        stem: Source file name without extension
        image_url: Value of the "image" field

    Returns:
        Path of the written file

    Raises:
        OSError: If the file cannot be written
    """
    out_path = Path(output_dir) / f"{stem}.json"
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump({"image": image_url}, f, indent=2)
    return out_path


def ensure_output_dir(output_dir: str | Path) -> Path:
    """Create the descriptor directory if needed.

    Raises:
        OSError: If it cannot be created or exists as a file
    """
    path = Path(output_dir).expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return path
