"""
Threshold calibration from a labelled photo set.

Each person directory contributes its first photo (sorted) as the enrolled
descriptor and the remaining photos as captures. Every capture is compared with
every enrolled descriptor: same person -> genuine, other person -> impostor.

Usage:
    python scripts/calibrate_threshold.py --dataset-dir data/calibration
    python scripts/calibrate_threshold.py --dataset-dir data/calibration --save-dir storage/eval
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List

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


def main():
    parser = argparse.ArgumentParser(description="Measure FAR/FRR for the configured threshold")
    parser.add_argument(
        "--dataset-dir", type=str, required=True,
        help="Root directory with one subdirectory of photos per person",
    )
    parser.add_argument(
        "--threshold", type=float, default=None,
        help="Threshold to evaluate (default: configured verify threshold)",
    )
    parser.add_argument(
        "--save-dir", type=str, default=None,
        help="Write diagnostic plots to this directory",
    )
    args = parser.parse_args()

    from faceid.config import get_config
    from faceid.evaluation import ThresholdEvaluator
    from faceid.pipeline import build_pipeline

    pipeline = build_pipeline(get_config())

    enrolled = {}
    captures: Dict[str, List] = {}
    for person_dir in sorted(p for p in Path(args.dataset_dir).iterdir() if p.is_dir()):
        images = sorted(p for p in person_dir.iterdir() if p.suffix.lower() in IMAGE_EXTENSIONS)
        if len(images) < 2:
            logger.warning(f"{person_dir.name}: need at least 2 photos, skipping")
            continue

        descriptors = []
        for image_path in images:
            image = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
            if image is None:
                logger.warning(f"Could not read {image_path}")
                continue
            descriptors.append(pipeline.describe(image))

        if len(descriptors) < 2:
            continue
        enrolled[person_dir.name] = descriptors[0]
        captures[person_dir.name] = descriptors[1:]

    if len(enrolled) < 2:
        logger.error("Need at least 2 people with 2+ readable photos each")
        sys.exit(1)

    scores: List[float] = []
    labels: List[int] = []
    for capture_person, capture_descriptors in captures.items():
        for captured in capture_descriptors:
            for enrolled_person, reference in enrolled.items():
                scores.append(pipeline.matcher.distance(captured, reference))
                labels.append(1 if capture_person == enrolled_person else 0)

    logger.info(
        f"{len(enrolled)} people, {sum(labels)} genuine and "
        f"{len(labels) - sum(labels)} impostor comparisons"
    )

    threshold = args.threshold if args.threshold is not None else pipeline.verify_threshold
    evaluator = ThresholdEvaluator(threshold, pipeline.matcher.metric.higher_is_better)
    report = evaluator.evaluate(scores, labels, save_dir=args.save_dir)

    print("=" * 60)
    print(f"Algorithm:      {pipeline.tag} ({pipeline.matcher.metric.name})")
    print(f"Threshold:      {report.threshold:.4f}")
    print(f"FAR:            {report.far:.4f}")
    print(f"FRR:            {report.frr:.4f}")
    print(f"EER:            {report.eer:.4f} at threshold {report.eer_threshold:.4f}")
    print(f"AUC:            {report.auc_score:.4f}")
    print("=" * 60)


if __name__ == "__main__":
    main()
