"""
Record store backends for the Exam Deduplicator package.

A record store holds ``Patient`` documents (each with an ordered ``exams`` list of
exam ids) and ``Exam`` documents (each pointing at one ``patient`` and an optional
``examDate``). The deduplication runner only needs three things from it: a
grouping query over ``(patient, examDate)``, a "pull id from patient.exams" update,
and an exam delete.
"""

import datetime
import logging
from dataclasses import dataclass, field

import pandas as pd
from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, PyMongoError

from .preprocessing import (
    EXAM_KEY_COLUMNS,
    PATIENT_KEY_COLUMNS,
    preprocess_exams,
    preprocess_patients,
    strip_keys,
    to_exam_date,
)

logger = logging.getLogger('exam_deduplication.store')


class RecordStoreError(Exception):
    """Base class for record store failures."""


class StoreUnavailable(RecordStoreError):
    """The store could not be reached."""


class QueryFailed(RecordStoreError):
    """The grouping query was rejected or failed mid-way."""


class LookupFailed(RecordStoreError):
    """A point lookup of a patient or exam failed."""


class DetachFailed(RecordStoreError):
    """Pulling an exam id out of a patient's exam list failed."""


class DeleteFailed(RecordStoreError):
    """Deleting an exam document failed."""


@dataclass
class DuplicateGroup:
    """Exams sharing one ``(patient, examDate)`` key. Computed per run, never stored."""

    patient_id: object
    exam_date: datetime.date
    members: list = field(default_factory=list)
    count: int = 0

    @property
    def key(self):
        return (self.patient_id, self.exam_date)


class RecordStore:
    """
    Contract consumed by the deduplication runner.

    Subclasses raise ``StoreUnavailable`` or ``QueryFailed`` from the grouping
    query, ``LookupFailed`` from point lookups, ``DetachFailed`` from
    ``remove_exam_id_from_patient`` and ``DeleteFailed`` from ``delete_exam``.
    An exam id missing from a patient's list, or an exam already deleted, is
    not an error.
    """

    def group_exams_by_patient_and_date(self, min_count=2):
        """
        Group exams by ``(patient, examDate)``.

        Parameters:
        -----------
        min_count : int
            Smallest group size to return (default: 2)

        Returns:
        --------
        list
            DuplicateGroup objects in store order
        """
        raise NotImplementedError

    def remove_exam_id_from_patient(self, patient_id, exam_id):
        """
        Pull every occurrence of ``exam_id`` from the patient's ``exams`` list.

        Returns:
        --------
        bool
            True once the patient no longer lists the exam. Raises
            ``DetachFailed`` when the patient does not exist.
        """
        raise NotImplementedError

    def delete_exam(self, exam_id):
        """
        Delete an exam document.

        Returns:
        --------
        bool
            True once the exam is gone, including when it never existed
        """
        raise NotImplementedError

    def get_exam(self, exam_id):
        """
        Returns:
        --------
        dict or None
            The exam document as stored, or None when absent
        """
        raise NotImplementedError

    def get_patient(self, patient_id):
        """
        Returns:
        --------
        dict or None
            The patient document as stored, or None when absent
        """
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class InMemoryRecordStore(RecordStore):
    """
    Record store kept in two pandas DataFrames.

    Used for offline snapshots loaded from parquet/CSV and for tests. Every
    successful mutation is appended to ``write_log`` in the order it happened.
    Documents keep their stored fields; matching uses the normalized key
    columns added by ``preprocess_exams``/``preprocess_patients``.

    Parameters:
    -----------
    patients : pandas.DataFrame or list of dict
        Patient documents with at least ``_id`` and ``exams``
    exams : pandas.DataFrame or list of dict
        Exam documents with at least ``_id``, ``patient`` and ``examDate``
    fail_on : dict, optional
        Failure injection: ``{'group': True, 'lookup': {exam ids},
        'detach': {exam ids}, 'delete': {exam ids}}``
    """

    def __init__(self, patients=None, exams=None, fail_on=None):
        self.patients = preprocess_patients(pd.DataFrame(patients if patients is not None else []))
        self.exams = preprocess_exams(pd.DataFrame(exams if exams is not None else []))
        self.fail_on = fail_on or {}
        self.write_log = []

    def group_exams_by_patient_and_date(self, min_count=2):
        if self.fail_on.get('group'):
            raise StoreUnavailable("In-memory store marked unavailable")

        grouped_exams = self.exams[self.exams['patient_key'].notna()]
        if grouped_exams.empty:
            return []

        groups = []
        grouped = grouped_exams.groupby(['patient_key', 'date_key'], dropna=False, sort=False)
        for (patient_id, exam_date), rows in grouped:
            members = list(dict.fromkeys(rows['exam_key']))
            if len(members) < min_count:
                continue
            groups.append(DuplicateGroup(
                patient_id=patient_id,
                exam_date=to_exam_date(exam_date),
                members=members,
                count=len(members),
            ))

        logger.debug(f"Grouping found {len(groups)} groups with at least {min_count} exams")
        return groups

    def remove_exam_id_from_patient(self, patient_id, exam_id):
        if exam_id in self.fail_on.get('detach', ()):
            raise DetachFailed(f"Could not pull exam {exam_id} from patient {patient_id}")

        matched = self.patients['patient_key'] == patient_id
        if not matched.any():
            raise DetachFailed(f"Patient {patient_id} not found")

        self.patients['exams'] = pd.Series(
            [
                [e for e in ids if e != exam_id] if is_owner else ids
                for is_owner, ids in zip(matched, self.patients['exams'])
            ],
            index=self.patients.index,
            dtype=object,
        )
        self.write_log.append(('detach', patient_id, exam_id))
        return True

    def delete_exam(self, exam_id):
        if exam_id in self.fail_on.get('delete', ()):
            raise DeleteFailed(f"Could not delete exam {exam_id}")

        self.exams = self.exams[self.exams['exam_key'] != exam_id].reset_index(drop=True)
        self.write_log.append(('delete', exam_id))
        return True

    def get_exam(self, exam_id):
        if exam_id in self.fail_on.get('lookup', ()):
            raise LookupFailed(f"Could not read exam {exam_id}")
        return self._find(self.exams, 'exam_key', exam_id, EXAM_KEY_COLUMNS)

    def get_patient(self, patient_id):
        return self._find(self.patients, 'patient_key', patient_id, PATIENT_KEY_COLUMNS)

    def snapshot(self):
        """
        Current documents without the key columns.

        Returns:
        --------
        tuple
            (patients_dataframe, exams_dataframe)
        """
        return strip_keys(self.patients, PATIENT_KEY_COLUMNS), strip_keys(self.exams, EXAM_KEY_COLUMNS)

    @staticmethod
    def _find(df, key_column, doc_id, key_columns):
        matches = df[df[key_column] == doc_id]
        if matches.empty:
            return None
        record = strip_keys(matches, key_columns).iloc[0].to_dict()
        return {k: (None if _is_missing(v) else v) for k, v in record.items()}


class MongoRecordStore(RecordStore):
    """
    Record store backed by a MongoDB database through pymongo.

    Parameters:
    -----------
    database : pymongo.database.Database
        Database holding the patient and exam collections
    patients_collection : str
        Name of the patient collection (default: patients)
    exams_collection : str
        Name of the exam collection (default: exams)
    client : pymongo.MongoClient, optional
        Owning client, closed by ``close()``
    """

    def __init__(self, database, patients_collection='patients', exams_collection='exams', client=None):
        self.database = database
        self.patients = database[patients_collection]
        self.exams = database[exams_collection]
        self.client = client

    @classmethod
    def connect(cls, uri, database=None, timeout_ms=5000, **collections):
        """Open a client with bounded server-selection and socket timeouts."""
        logger.info(f"Connecting to MongoDB (timeout {timeout_ms} ms)")
        client = MongoClient(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
        )
        db = client[database] if database else client.get_default_database()
        return cls(db, client=client, **collections)

    @staticmethod
    def duplicate_pipeline(min_count=2):
        return [
            {
                '$group': {
                    '_id': {
                        'patient': '$patient',
                        'examDate': {'$dateTrunc': {'date': '$examDate', 'unit': 'day'}},
                    },
                    'dups': {'$addToSet': '$_id'},
                    'count': {'$sum': 1},
                }
            },
            {'$match': {'count': {'$gte': min_count}}},
        ]

    def group_exams_by_patient_and_date(self, min_count=2):
        try:
            results = list(self.exams.aggregate(self.duplicate_pipeline(min_count)))
        except ConnectionFailure as e:
            raise StoreUnavailable(str(e)) from e
        except PyMongoError as e:
            raise QueryFailed(str(e)) from e

        return [
            DuplicateGroup(
                patient_id=doc['_id'].get('patient'),
                exam_date=to_exam_date(doc['_id'].get('examDate')),
                members=list(doc['dups']),
                count=doc['count'],
            )
            for doc in results
        ]

    def remove_exam_id_from_patient(self, patient_id, exam_id):
        try:
            result = self.patients.update_one({'_id': patient_id}, {'$pull': {'exams': exam_id}})
        except PyMongoError as e:
            raise DetachFailed(str(e)) from e
        if result.matched_count == 0:
            raise DetachFailed(f"Patient {patient_id} not found")
        return True

    def delete_exam(self, exam_id):
        try:
            self.exams.delete_one({'_id': exam_id})
        except PyMongoError as e:
            raise DeleteFailed(str(e)) from e
        return True

    def get_exam(self, exam_id):
        try:
            return self.exams.find_one({'_id': exam_id})
        except PyMongoError as e:
            raise LookupFailed(str(e)) from e

    def get_patient(self, patient_id):
        try:
            return self.patients.find_one({'_id': patient_id})
        except PyMongoError as e:
            raise LookupFailed(str(e)) from e

    def close(self):
        if self.client is not None:
            self.client.close()


def _is_missing(value):
    if isinstance(value, (list, tuple, set, dict)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False
