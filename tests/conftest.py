import pytest

from exam_deduplicator.utils.store import InMemoryRecordStore


@pytest.fixture
def patient_with_duplicates():
    """Patient P with E1, E2, E3 on 2021-02-12 and E4 on 2021-02-13."""
    patients = [
        {'_id': 'P', 'exams': ['E1', 'E2', 'E3', 'E4']},
        {'_id': 'Q', 'exams': ['E5']},
    ]
    exams = [
        {'_id': 'E1', 'patient': 'P', 'examDate': '2021-02-12T09:00:00Z', 'createdAt': '2021-02-12T09:05:00Z'},
        {'_id': 'E2', 'patient': 'P', 'examDate': '2021-02-12T11:30:00Z', 'createdAt': '2021-02-12T08:00:00Z'},
        {'_id': 'E3', 'patient': 'P', 'examDate': '2021-02-12', 'createdAt': '2021-02-12T10:00:00Z'},
        {'_id': 'E4', 'patient': 'P', 'examDate': '2021-02-13', 'createdAt': '2021-02-13T10:00:00Z'},
        {'_id': 'E5', 'patient': 'Q', 'examDate': '2021-02-12', 'createdAt': '2021-02-12T10:00:00Z'},
    ]
    return patients, exams


@pytest.fixture
def store(patient_with_duplicates):
    patients, exams = patient_with_duplicates
    return InMemoryRecordStore(patients, exams)


@pytest.fixture
def clean_store():
    patients = [
        {'_id': 'P', 'exams': ['E1', 'E2']},
        {'_id': 'Q', 'exams': ['E3']},
    ]
    exams = [
        {'_id': 'E1', 'patient': 'P', 'examDate': '2021-02-12'},
        {'_id': 'E2', 'patient': 'P', 'examDate': '2021-02-13'},
        {'_id': 'E3', 'patient': 'Q', 'examDate': '2021-02-12'},
    ]
    return InMemoryRecordStore(patients, exams)
