"""
Threshold Evaluation Module

Measures how a verify/identify threshold behaves on labelled comparison
scores (genuine pairs vs. impostor pairs) and suggests a threshold at the
equal error rate. Works for both distance metrics (lower is better) and
similarity metrics (higher is better).

Usage:
    from faceid.evaluation import ThresholdEvaluator

    evaluator = ThresholdEvaluator(threshold=0.20, higher_is_better=False)
    report = evaluator.evaluate(scores, labels, save_dir="storage/eval")
    print(f"FAR={report.far:.3f} FRR={report.frr:.3f} EER={report.eer:.3f}")
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from sklearn.metrics import ConfusionMatrixDisplay, auc, confusion_matrix, roc_curve

logger = logging.getLogger(__name__)


@dataclass
class EvaluationReport:
    """Container for threshold evaluation metrics."""

    scores: np.ndarray
    labels: np.ndarray
    decisions: np.ndarray
    threshold: float

    far: float
    frr: float
    tar: float
    eer: float
    eer_threshold: float
    auc_score: float
    confusion_matrix: np.ndarray


class ThresholdEvaluator:
    """
    Biometric error rates for one acceptance threshold.

    Decisions use the same strict comparison as the matcher, so a score
    exactly on the threshold counts as a reject.

    Args:
        threshold: Acceptance threshold under test.
        higher_is_better: False for distances (accept below threshold),
                          True for similarities (accept above).
    """

    def __init__(self, threshold: float, higher_is_better: bool = False):
        self.threshold = float(threshold)
        self.higher_is_better = higher_is_better

    def decide(self, scores) -> np.ndarray:
        scores = np.asarray(scores, dtype=np.float64)
        if self.higher_is_better:
            return (scores > self.threshold).astype(int)
        return (scores < self.threshold).astype(int)

    def _oriented(self, scores: np.ndarray) -> np.ndarray:
        """Scores flipped so that larger always means more genuine."""
        return scores if self.higher_is_better else -scores

    def evaluate(
        self,
        scores: List[float],
        labels: List[int],
        save_dir: Optional[str] = None,
    ) -> EvaluationReport:
        """
        Evaluate the threshold.

        Args:
            scores: Metric outputs for each comparison.
            labels: Ground truth (1 = genuine, 0 = impostor).
            save_dir: If provided, diagnostic plots are written there as PNG.

        Returns:
            EvaluationReport with all computed metrics.

        Raises:
            ValueError: If lengths differ or a class is missing.
        """
        scores = np.asarray(scores, dtype=np.float64)
        labels = np.asarray(labels, dtype=np.int32)

        if scores.shape != labels.shape:
            raise ValueError(f"{scores.shape[0]} scores but {labels.shape[0]} labels")
        if not (np.any(labels == 1) and np.any(labels == 0)):
            raise ValueError("Need both genuine (1) and impostor (0) comparisons")

        decisions = self.decide(scores)

        false_accepts = np.sum((decisions == 1) & (labels == 0))
        false_rejects = np.sum((decisions == 0) & (labels == 1))
        far = float(false_accepts / np.sum(labels == 0))
        frr = float(false_rejects / np.sum(labels == 1))

        eer_val, eer_thresh = self._compute_eer(labels, scores)
        fpr, tpr, _ = roc_curve(labels, self._oriented(scores))
        auc_val = float(auc(fpr, tpr))

        cm = confusion_matrix(labels, decisions, labels=[0, 1])

        logger.info(
            f"Threshold {self.threshold}: FAR={far:.4f} FRR={frr:.4f} "
            f"EER={eer_val:.4f}@{eer_thresh:.4f} AUC={auc_val:.4f}"
        )

        if save_dir:
            self._save_plots(scores, labels, cm, save_dir)

        return EvaluationReport(
            scores=scores,
            labels=labels,
            decisions=decisions,
            threshold=self.threshold,
            far=far,
            frr=frr,
            tar=1.0 - frr,
            eer=eer_val,
            eer_threshold=eer_thresh,
            auc_score=auc_val,
            confusion_matrix=cm,
        )

    def _compute_eer(self, labels, scores):
        """Find the Equal Error Rate (threshold where FAR = FRR)."""
        fpr, tpr, thresholds = roc_curve(labels, self._oriented(scores))
        fnr = 1 - tpr
        eer_index = int(np.argmin(np.abs(fpr - fnr)))
        eer = float((fpr[eer_index] + fnr[eer_index]) / 2)

        threshold = float(thresholds[eer_index])
        if not np.isfinite(threshold):
            # roc_curve prepends an "accept nothing" sentinel
            threshold = float(self._oriented(scores).max())
        return eer, float(threshold if self.higher_is_better else -threshold)

    def _save_plots(self, scores, labels, cm, save_dir):
        os.makedirs(save_dir, exist_ok=True)

        plt.figure(figsize=(8, 5))
        plt.hist(scores[labels == 1], bins=25, alpha=0.7, label="Genuine", color="green")
        plt.hist(scores[labels == 0], bins=25, alpha=0.7, label="Impostor", color="red")
        plt.axvline(self.threshold, color="black", linestyle="--", label=f"Threshold ({self.threshold:.2f})")
        plt.xlabel("Similarity" if self.higher_is_better else "Distance")
        plt.ylabel("Count")
        plt.title("Score Distribution")
        plt.legend()
        plt.tight_layout()
        plt.savefig(os.path.join(save_dir, "score_distributions.png"), dpi=150)
        plt.close()

        fpr, tpr, _ = roc_curve(labels, self._oriented(scores))
        plt.figure(figsize=(7, 6))
        plt.plot(fpr, tpr, label=f"ROC (AUC = {auc(fpr, tpr):.3f})")
        plt.plot([0, 1], [0, 1], "k--", alpha=0.3, label="Random")
        plt.xlabel("False Accept Rate (FAR)")
        plt.ylabel("True Accept Rate (TAR)")
        plt.title("ROC Curve")
        plt.legend()
        plt.tight_layout()
        plt.savefig(os.path.join(save_dir, "roc_curve.png"), dpi=150)
        plt.close()

        disp = ConfusionMatrixDisplay(confusion_matrix=cm, display_labels=["Impostor", "Genuine"])
        fig, ax = plt.subplots(figsize=(6, 5))
        disp.plot(ax=ax)
        ax.set_title("Confusion Matrix")
        fig.tight_layout()
        fig.savefig(os.path.join(save_dir, "confusion_matrix.png"), dpi=150)
        plt.close(fig)
