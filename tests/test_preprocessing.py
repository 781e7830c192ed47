import datetime

import numpy as np
import pandas as pd

from exam_deduplicator.utils.preprocessing import (
    normalize_id,
    preprocess_exams,
    preprocess_patients,
    strip_keys,
    to_exam_date,
    to_timestamp,
    EXAM_KEY_COLUMNS,
)


def test_to_exam_date():
    assert to_exam_date('2021-02-12T23:10:00Z') == datetime.date(2021, 2, 12)
    assert to_exam_date(datetime.datetime(2021, 2, 12, 8, 30)) == datetime.date(2021, 2, 12)
    assert to_exam_date(datetime.date(2021, 2, 12)) == datetime.date(2021, 2, 12)
    assert to_exam_date(None) is None
    assert to_exam_date(pd.NaT) is None
    assert to_exam_date('not a date') is None


def test_to_timestamp():
    assert to_timestamp('2021-02-12T10:00:00+02:00') == pd.Timestamp('2021-02-12 08:00:00')
    assert to_timestamp(None) is None
    assert to_timestamp('') is None


def test_normalize_id():
    assert normalize_id(10) == '10'
    assert normalize_id(10.0) == '10'
    assert normalize_id(np.float64(7)) == '7'
    assert normalize_id(' E1 ') == 'E1'
    assert normalize_id(float('nan')) is None
    assert normalize_id(None) is None
    assert normalize_id(10.5) == '10.5'


def test_exam_keys_added_without_touching_raw_columns():
    exams = pd.DataFrame([
        {'_id': 1, 'patient': 10, 'examDate': '2021-02-12T08:00:00+02:00'},
        {'_id': 2, 'patient': 10, 'examDate': '2021-02-12'},
    ])

    result = preprocess_exams(exams)

    assert list(result['exam_key']) == ['1', '2']
    assert list(result['patient_key']) == ['10', '10']
    assert list(result['date_key']) == [pd.Timestamp('2021-02-12'), pd.Timestamp('2021-02-12')]
    assert strip_keys(result, EXAM_KEY_COLUMNS).equals(exams)


def test_orphaned_exams_kept_without_patient_key():
    exams = pd.DataFrame([
        {'_id': 'E1', 'patient': 'P', 'examDate': '2021-02-12'},
        {'_id': 'E2', 'patient': None, 'examDate': '2021-02-12'},
    ])

    result = preprocess_exams(exams)

    assert list(result['_id']) == ['E1', 'E2']
    assert result.loc[0, 'patient_key'] == 'P'
    assert result.loc[1, 'patient_key'] is None


def test_patient_exam_lists_normalized():
    patients = pd.DataFrame([
        {'_id': 'P', 'exams': ('E1', 'E2')},
        {'_id': 'Q', 'exams': None},
        {'_id': 'R', 'exams': 'E3'},
        {'_id': 5, 'exams': 7},
    ])

    result = preprocess_patients(patients)

    assert list(result['exams']) == [['E1', 'E2'], [], ['E3'], ['7']]
    assert list(result['patient_key']) == ['P', 'Q', 'R', '5']
