"""
Input/Output utilities for the Exam Deduplicator package.
"""

import time
import logging
import pandas as pd
from pathlib import Path

from .preprocessing import PATIENT_REQUIRED_COLUMNS, EXAM_REQUIRED_COLUMNS

logger = logging.getLogger('exam_deduplication.io')

READERS = {
    '.parquet': pd.read_parquet,
    '.csv': pd.read_csv,
    '.json': pd.read_json,
}


def _read_table(path):
    path = Path(path)
    reader = READERS.get(path.suffix.lower())
    if reader is None:
        raise ValueError(f"Unsupported file format: {path.suffix} (expected one of {sorted(READERS)})")
    return reader(path)


def _split_exam_ids(value):
    # CSV has no list type, exam ids are written separated by ';'
    if isinstance(value, str):
        return [e for e in value.split(';') if e]
    return value


def load_snapshot(patients_file, exams_file):
    """
    Load patient and exam documents exported from the record store.

    Parameters:
    -----------
    patients_file : str
        Path to the patients file (parquet, csv or json)
    exams_file : str
        Path to the exams file (parquet, csv or json)

    Returns:
    --------
    tuple
        (patients_dataframe, exams_dataframe)
    """
    start_time = time.time()

    logger.info(f"Loading patients data from {patients_file}")
    patients_df = _read_table(patients_file)
    if 'exams' in patients_df.columns:
        patients_df['exams'] = patients_df['exams'].map(_split_exam_ids)
    logger.info(f"Patients dataset shape: {patients_df.shape}")

    missing_cols = [col for col in PATIENT_REQUIRED_COLUMNS if col not in patients_df.columns]
    if missing_cols:
        logger.warning(f"Missing required columns in patients data: {missing_cols}")

    logger.info(f"Loading exams data from {exams_file}")
    exams_df = _read_table(exams_file)
    logger.info(f"Exams dataset shape: {exams_df.shape}")

    missing_cols = [col for col in EXAM_REQUIRED_COLUMNS if col not in exams_df.columns]
    if missing_cols:
        logger.warning(f"Missing required columns in exams data: {missing_cols}")

    logger.info(f"Snapshot loaded in {time.time() - start_time:.2f} seconds")
    return patients_df, exams_df


def save_snapshot(store, output_dir):
    """
    Write an in-memory store's patients and exams to parquet files.

    Parameters:
    -----------
    store : InMemoryRecordStore
        Store to persist
    output_dir : str or Path
        Directory to save the files

    Returns:
    --------
    tuple
        (patients_path, exams_path)
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)

    patients_path = output_dir / "patients.parquet"
    exams_path = output_dir / "exams.parquet"
    patients_df, exams_df = store.snapshot()
    patients_df.to_parquet(patients_path, index=False)
    exams_df.to_parquet(exams_path, index=False)
    logger.info(f"Saved snapshot to {output_dir}")

    return str(patients_path), str(exams_path)


def save_results(report, output_path):
    """
    Export the removal outcomes of a deduplication run to a CSV file.

    Parameters:
    -----------
    report : DeduplicationReport
        Report returned by ExamDeduplicator.run()
    output_path : str or Path
        Path to save the output file

    Returns:
    --------
    str
        Path to the saved file
    """
    records = report.as_records()
    if not records:
        logger.warning("No removals to export")
        return None

    df_export = pd.DataFrame(records)

    output_path = Path(output_path)
    df_export.to_csv(output_path, index=False)
    logger.info(f"Exported {len(df_export)} removal outcomes to {output_path}")

    return str(output_path)
