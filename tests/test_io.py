import pandas as pd

from exam_deduplicator import ExamDeduplicator
from exam_deduplicator.utils.io import load_snapshot, save_results, save_snapshot
from exam_deduplicator.utils.store import InMemoryRecordStore


def write_csv_snapshot(tmp_path):
    patients = tmp_path / "patients.csv"
    exams = tmp_path / "exams.csv"
    pd.DataFrame([
        {'_id': 'P', 'exams': 'E1;E2;E3'},
    ]).to_csv(patients, index=False)
    pd.DataFrame([
        {'_id': 'E1', 'patient': 'P', 'examDate': '2021-02-12', 'createdAt': '2021-02-12T08:00:00Z'},
        {'_id': 'E2', 'patient': 'P', 'examDate': '2021-02-12', 'createdAt': '2021-02-12T09:00:00Z'},
        {'_id': 'E3', 'patient': 'P', 'examDate': '2021-02-13', 'createdAt': '2021-02-13T09:00:00Z'},
    ]).to_csv(exams, index=False)
    return patients, exams


def test_load_csv_snapshot(tmp_path):
    patients_file, exams_file = write_csv_snapshot(tmp_path)

    patients_df, exams_df = load_snapshot(patients_file, exams_file)

    assert patients_df.loc[0, 'exams'] == ['E1', 'E2', 'E3']
    assert len(exams_df) == 3


def test_snapshot_round_trip_through_parquet(tmp_path):
    patients_df, exams_df = load_snapshot(*write_csv_snapshot(tmp_path))
    store = InMemoryRecordStore(patients_df, exams_df)
    ExamDeduplicator(store, delay=0).run()

    patients_path, exams_path = save_snapshot(store, tmp_path / "out")
    reloaded = InMemoryRecordStore(*load_snapshot(patients_path, exams_path))

    assert sorted(reloaded.exams['_id']) == ['E1', 'E3']
    assert reloaded.get_patient('P')['exams'] == ['E1', 'E3']
    assert reloaded.group_exams_by_patient_and_date() == []


def test_save_results(tmp_path, store):
    report = ExamDeduplicator(store, delay=0).run()

    path = save_results(report, tmp_path / "results.csv")

    df = pd.read_csv(path)
    assert set(df['exam_id']) == {'E1', 'E3'}
    assert set(df.columns) >= {'patient_id', 'exam_date', 'survivor_id', 'detached', 'deleted', 'error'}


def test_save_results_without_removals(tmp_path, clean_store):
    report = ExamDeduplicator(clean_store, delay=0).run()

    assert save_results(report, tmp_path / "results.csv") is None


def test_csv_orphan_row_does_not_break_patient_matching(tmp_path):
    patients_file = tmp_path / "patients.csv"
    exams_file = tmp_path / "exams.csv"
    patients_file.write_text("_id,exams\n10,1;2\n")
    exams_file.write_text(
        "_id,patient,examDate\n"
        "1,10,2021-02-12\n"
        "2,10,2021-02-12\n"
        "3,,2021-02-12\n"
    )
    store = InMemoryRecordStore(*load_snapshot(patients_file, exams_file))

    ExamDeduplicator(store, delay=0, policy='lowest_id').run()

    assert store.write_log == [('detach', '10', '2'), ('delete', '2')]
    assert store.get_patient('10')['exams'] == ['1']
    assert sorted(store.exams['_id']) == [1, 3]


def test_untouched_exams_saved_as_loaded(tmp_path):
    exams = pd.DataFrame([
        {'_id': 'E1', 'patient': 'P', 'examDate': '2021-02-12T09:30:00Z'},
        {'_id': 'E2', 'patient': 'P', 'examDate': '2021-02-13T10:00:00Z'},
        {'_id': 'E9', 'patient': None, 'examDate': '2021-02-12T11:00:00Z'},
    ])
    store = InMemoryRecordStore([{'_id': 'P', 'exams': ['E1', 'E2']}], exams)
    ExamDeduplicator(store, delay=0).run()

    _, exams_path = save_snapshot(store, tmp_path / "out")

    saved = pd.read_parquet(exams_path)
    pd.testing.assert_frame_equal(saved, exams, check_dtype=False)
    assert store.write_log == []
