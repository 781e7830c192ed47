"""
Visualization utilities for the Exam Deduplicator package.
"""

import logging
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from pathlib import Path

logger = logging.getLogger('exam_deduplication.visualization')


def _prepare_output_dir(output_dir):
    output_dir = Path(output_dir) if output_dir else Path.cwd() / "output"
    output_dir.mkdir(exist_ok=True, parents=True)
    return output_dir


def plot_duplicates_per_patient(records, output_dir=None, max_patients=20):
    """
    Horizontal bar chart of duplicate exams per patient.

    Parameters:
    -----------
    records : list
        Removal outcome dictionaries from DeduplicationReport.as_records()
    output_dir : str or Path, optional
        Directory to save the visualization
    max_patients : int
        Maximum number of patients to show

    Returns:
    --------
    str
        Path to the saved visualization file
    """
    if not records:
        logger.warning("No duplicates to visualize")
        return None

    output_dir = _prepare_output_dir(output_dir)
    df = pd.DataFrame(records)

    counts = df.groupby('patient_id').size().sort_values(ascending=False).head(max_patients)
    failed = df[df['error'].notna()].groupby('patient_id').size().reindex(counts.index, fill_value=0)

    plt.figure(figsize=(12, max(4, len(counts) * 0.4)))
    labels = [str(p)[:24] for p in counts.index]
    plt.barh(labels, counts.values, color='darkblue', label='Planned removals')
    plt.barh(labels, failed.values, color='darkred', label='Failed')

    plt.xlabel('Duplicate exams')
    plt.ylabel('Patient')
    plt.title(f'Duplicate exams per patient (top {len(counts)})')
    plt.gca().invert_yaxis()
    plt.legend()
    plt.tight_layout()

    output_path = output_dir / "duplicates_per_patient.png"
    plt.savefig(output_path, dpi=150)
    plt.close()
    logger.info(f"Saved per-patient duplicates chart to {output_path}")

    return str(output_path)


def plot_group_sizes(records, output_dir=None):
    """
    Histogram of duplicate group sizes.

    Returns:
    --------
    str
        Path to the saved visualization file
    """
    if not records:
        logger.warning("No duplicates to visualize")
        return None

    output_dir = _prepare_output_dir(output_dir)
    df = pd.DataFrame(records).drop_duplicates(subset=['patient_id', 'exam_date'])
    sizes = df['group_size'].to_numpy()

    plt.figure(figsize=(8, 5))
    bins = np.arange(2, sizes.max() + 2) - 0.5
    plt.hist(sizes, bins=bins, color='darkgreen', edgecolor='black')
    plt.xticks(np.arange(2, sizes.max() + 1))
    plt.xlabel('Exams in group')
    plt.ylabel('Number of groups')
    plt.title(f'Duplicate group sizes ({len(df)} groups)')
    plt.tight_layout()

    output_path = output_dir / "group_sizes.png"
    plt.savefig(output_path, dpi=150)
    plt.close()
    logger.info(f"Saved group size histogram to {output_path}")

    return str(output_path)
