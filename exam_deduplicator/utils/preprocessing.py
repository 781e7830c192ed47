"""
Preprocessing utilities for the Exam Deduplicator package.

Stored documents are never rewritten here: grouping keys are added as extra
columns next to the raw fields, and stripped again before a snapshot is saved.
"""

import datetime
import logging

import numpy as np
import pandas as pd

logger = logging.getLogger('exam_deduplication.preprocessing')

PATIENT_REQUIRED_COLUMNS = ['_id', 'exams']
EXAM_REQUIRED_COLUMNS = ['_id', 'patient', 'examDate']

# Derived columns holding normalized keys
EXAM_KEY_COLUMNS = ['exam_key', 'patient_key', 'date_key']
PATIENT_KEY_COLUMNS = ['patient_key']


def normalize_id(value):
    """
    Turn a stored document id into the string used for matching.

    CSV readers load integer ids as floats once a column has a gap, so an
    integral float is written without its ``.0``.

    Parameters:
    -----------
    value : str, int, float, ObjectId or None
        Raw id

    Returns:
    --------
    str or None
        Normalized id, or None when missing
    """
    if value is None or (not isinstance(value, (list, tuple, np.ndarray)) and pd.isna(value)):
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    if isinstance(value, str):
        return value.strip() or None
    return str(value)


def _parse_timestamp(value):
    # Element-wise so one column may mix date-only and full ISO timestamps
    if value is None or (not isinstance(value, (list, tuple)) and pd.isna(value)):
        return pd.NaT
    return pd.to_datetime(value, utc=True, errors='coerce')


def to_timestamp(value):
    """Parse a stored timestamp to a naive UTC ``pandas.Timestamp``, or None."""
    timestamp = _parse_timestamp(value)
    if pd.isna(timestamp):
        return None
    return timestamp.tz_convert(None)


def to_exam_date(value):
    """
    Reduce a stored exam date to a calendar date.

    Parameters:
    -----------
    value : str, datetime, pandas.Timestamp or None
        Raw exam date as stored

    Returns:
    --------
    datetime.date or None
        Calendar date, or None when the value is missing or unparseable
    """
    if value is None:
        return None
    if isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
        return value
    timestamp = to_timestamp(value)
    if timestamp is None:
        return None
    return timestamp.date()


def _normalize_dates(series):
    """Parse a column of dates to naive UTC timestamps truncated to the day."""
    parsed = pd.to_datetime(series.map(_parse_timestamp), utc=True).dt.tz_convert(None)
    unparseable = int((parsed.isna() & series.notna()).sum())
    if unparseable:
        logger.warning(f"{unparseable} exam dates could not be parsed and will be grouped as missing")
    return parsed.dt.normalize()


def _normalize_id_list(ids):
    if ids is None:
        return []
    if isinstance(ids, float) and np.isnan(ids):
        return []
    if not isinstance(ids, (list, tuple, set, np.ndarray)):
        ids = [ids]
    return [e for e in (normalize_id(i) for i in ids) if e is not None]


def _key_series(values, index):
    return pd.Series(list(values), index=index, dtype=object)


def preprocess_exams(exams_df):
    """
    Add the grouping keys to exam documents.

    This includes:
    - ``exam_key`` and ``patient_key``: ids normalized with ``normalize_id``
    - ``date_key``: ``examDate`` truncated to a calendar day (UTC)

    Exams without a patient keep a missing ``patient_key`` and are left out of
    grouping. The raw columns are not modified.

    Parameters:
    -----------
    exams_df : pandas.DataFrame
        Exam documents

    Returns:
    --------
    pandas.DataFrame
        Exam documents with key columns appended
    """
    preprocessed_df = exams_df.copy().reset_index(drop=True)
    for col in EXAM_REQUIRED_COLUMNS:
        if col not in preprocessed_df.columns:
            preprocessed_df[col] = pd.Series(dtype=object)

    if preprocessed_df.empty:
        for col in EXAM_KEY_COLUMNS:
            preprocessed_df[col] = pd.Series(dtype=object)
        return preprocessed_df

    preprocessed_df['exam_key'] = _key_series(map(normalize_id, preprocessed_df['_id']), preprocessed_df.index)
    preprocessed_df['patient_key'] = _key_series(map(normalize_id, preprocessed_df['patient']), preprocessed_df.index)
    preprocessed_df['date_key'] = _normalize_dates(preprocessed_df['examDate'])

    orphaned = preprocessed_df['patient_key'].isna()
    if orphaned.any():
        logger.warning(f"{int(orphaned.sum())} exams have no patient reference and will not be grouped")

    logger.debug(f"Preprocessed exam data shape: {preprocessed_df.shape}")
    return preprocessed_df


def preprocess_patients(patients_df):
    """Add ``patient_key`` and turn ``exams`` into plain lists of normalized ids."""
    preprocessed_df = patients_df.copy().reset_index(drop=True)
    for col in PATIENT_REQUIRED_COLUMNS:
        if col not in preprocessed_df.columns:
            preprocessed_df[col] = pd.Series(dtype=object)

    if preprocessed_df.empty:
        preprocessed_df['patient_key'] = pd.Series(dtype=object)
        return preprocessed_df

    preprocessed_df['patient_key'] = _key_series(map(normalize_id, preprocessed_df['_id']), preprocessed_df.index)
    preprocessed_df['exams'] = _key_series(
        (_normalize_id_list(ids) for ids in preprocessed_df['exams']),
        preprocessed_df.index,
    )
    return preprocessed_df


def strip_keys(df, key_columns):
    """Drop the derived key columns, returning the documents as stored."""
    return df.drop(columns=[c for c in key_columns if c in df.columns])
