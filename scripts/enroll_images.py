"""
Bulk enrollment from a folder of photos.

Accepted layouts:
    <image-dir>/<student_id>.jpg            one photo per student
    <image-dir>/<student_id>/<any>.jpg      first photo (sorted) is used

Usage:
    python scripts/enroll_images.py --image-dir data/roster
    python scripts/enroll_images.py --image-dir data/roster --names names.json
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import cv2

# Add project root to path
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".tif"}


def find_roster_images(image_dir: Path) -> List[Tuple[str, Path]]:
    """Return (student_id, image_path) pairs in sorted student order."""
    found: List[Tuple[str, Path]] = []

    for path in sorted(image_dir.iterdir()):
        if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS:
            found.append((path.stem, path))
        elif path.is_dir():
            images = sorted(p for p in path.iterdir() if p.suffix.lower() in IMAGE_EXTENSIONS)
            if images:
                found.append((path.name, images[0]))
            else:
                logger.warning(f"No images in {path}, skipping")

    return found


def main():
    parser = argparse.ArgumentParser(description="Enroll a roster of student photos")
    parser.add_argument(
        "--image-dir", type=str, required=True,
        help="Directory with <student_id>.jpg files or <student_id>/ subdirectories",
    )
    parser.add_argument(
        "--names", type=str, default=None,
        help="Optional JSON file mapping student_id to display name",
    )
    parser.add_argument(
        "--storage-dir", type=str, default=None,
        help="Descriptor directory (default: storage.descriptors_dir from config.yaml)",
    )
    parser.add_argument(
        "--db-path", type=str, default=None,
        help="SQLite path (default: storage.db_path from config.yaml)",
    )
    args = parser.parse_args()

    from faceid.config import get_config
    from faceid.errors import FaceIdError
    from faceid.pipeline import build_pipeline
    from faceid.store import get_store

    names: Dict[str, str] = {}
    if args.names:
        with open(args.names, "r", encoding="utf-8") as f:
            names = json.load(f)

    pipeline = build_pipeline(get_config())
    store = get_store(args.storage_dir, args.db_path)

    roster = find_roster_images(Path(args.image_dir))
    logger.info(f"Found {len(roster)} students in {args.image_dir}")

    enrolled = 0
    for student_id, image_path in roster:
        image = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
        if image is None:
            logger.warning(f"Could not read {image_path}, skipping {student_id}")
            continue

        student_name: Optional[str] = names.get(student_id)
        try:
            descriptor = pipeline.describe(image)
        except FaceIdError as e:
            logger.warning(f"Failed to describe {image_path}: {e}")
            continue

        try:
            store.save_descriptor(
                student_id,
                descriptor,
                student_name=student_name,
                metadata={"source_image": image_path.name},
            )
        except ValueError as e:
            logger.warning(f"Skipping {image_path}: {e}")
            continue
        enrolled += 1

    logger.info(f"Enrolled {enrolled}/{len(roster)} students ({pipeline.tag})")
    store.close()


if __name__ == "__main__":
    main()
