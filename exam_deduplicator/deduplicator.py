"""
Exam Deduplicator - Core module

This module contains the main ExamDeduplicator class responsible for finding exams
recorded more than once for the same patient on the same date, and removing the
extra copies from the record store.
"""

import time
import logging
from enum import Enum
from pathlib import Path
from dataclasses import dataclass, field

from .utils.store import RecordStoreError
from .utils.preprocessing import to_timestamp
from .utils.selection import POLICIES, TIMESTAMP_POLICIES, plan_removals
from .utils.io import save_results
from .utils.visualization import plot_duplicates_per_patient, plot_group_sizes

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('exam_deduplication')


class RunState(Enum):
    IDLE = 'idle'
    SCANNING = 'scanning'
    PROCESSING = 'processing'
    FAILED = 'failed'


class RemovalState(Enum):
    DETACH_PENDING = 'detach_pending'
    DETACH_DONE = 'detach_done'
    DELETE_DONE = 'delete_done'


@dataclass
class RemovalOutcome:
    patient_id: object
    exam_date: object
    exam_id: object
    survivor_id: object
    group_size: int
    state: RemovalState = RemovalState.DETACH_PENDING
    error: str = None

    @property
    def detached(self):
        return self.state in (RemovalState.DETACH_DONE, RemovalState.DELETE_DONE)

    @property
    def deleted(self):
        return self.state is RemovalState.DELETE_DONE


@dataclass
class DeduplicationReport:
    groups_found: int = 0
    outcomes: list = field(default_factory=list)
    elapsed: float = 0.0
    dry_run: bool = False

    @property
    def exams_removed(self):
        return sum(1 for o in self.outcomes if o.deleted)

    @property
    def failures(self):
        return sum(1 for o in self.outcomes if o.error is not None)

    def as_records(self):
        """Flatten the outcomes into dictionaries, one per planned removal."""
        return [
            {
                'patient_id': str(o.patient_id),
                'exam_date': o.exam_date.isoformat() if o.exam_date else None,
                'exam_id': None if o.exam_id is None else str(o.exam_id),
                'survivor_id': None if o.survivor_id is None else str(o.survivor_id),
                'group_size': o.group_size,
                'detached': o.detached,
                'deleted': o.deleted,
                'error': o.error,
            }
            for o in self.outcomes
        ]


class ExamDeduplicator:
    """
    A class to remove duplicate exams, so that each patient keeps at most one
    exam per calendar date.
    """

    def __init__(self, store, delay=0.1, policy='earliest_created', dry_run=False, output_dir=None):
        """
        Initialize the deduplicator with a record store.

        Parameters:
        -----------
        store : RecordStore
            Store holding the patient and exam documents
        delay : float
            Seconds to wait between duplicate groups (default: 0.1)
        policy : str
            Survivor selection policy (default: earliest_created)
        dry_run : bool
            Plan removals without writing to the store
        output_dir : str, optional
            Directory to save reports and charts
        """
        if policy not in POLICIES:
            raise ValueError(f"Unknown selection policy: {policy}")

        self.store = store
        self.delay = delay
        self.policy = policy
        self.dry_run = dry_run
        self.output_dir = Path(output_dir) if output_dir else Path.cwd() / "output"

        self.state = RunState.IDLE
        self.report = None

        logger.info(f"Initialized ExamDeduplicator with {type(store).__name__}")

    def set_configuration(self, delay=None, policy=None, dry_run=None):
        """
        Configure the deduplication parameters.

        Parameters:
        -----------
        delay : float, optional
            Seconds to wait between duplicate groups
        policy : str, optional
            Survivor selection policy
        dry_run : bool, optional
            Plan removals without writing to the store
        """
        if delay is not None:
            if delay >= 0:
                self.delay = delay
            else:
                logger.warning(f"Invalid delay: {delay}. Using {self.delay} instead.")

        if policy is not None:
            if policy in POLICIES:
                self.policy = policy
            else:
                logger.warning(f"Invalid policy: {policy}. Using '{self.policy}' instead.")

        if dry_run is not None:
            self.dry_run = dry_run

        logger.info(f"Configuration updated:")
        logger.info(f"- Delay between groups: {self.delay}s")
        logger.info(f"- Selection policy: {self.policy}")
        logger.info(f"- Dry run: {self.dry_run}")

    def find_duplicate_groups(self):
        """
        Query the store for every (patient, examDate) pair with more than one exam.

        Returns:
        --------
        list
            DuplicateGroup objects in store order

        Raises:
        -------
        RecordStoreError
            When the grouping query fails. The run is marked FAILED.
        """
        self.state = RunState.SCANNING
        try:
            groups = self.store.group_exams_by_patient_and_date(min_count=2)
        except RecordStoreError as e:
            self.state = RunState.FAILED
            logger.error(f"Duplicate query failed, aborting run: {e}")
            raise
        logger.info(f"Found {len(groups)} duplicate groups")
        return groups

    def _creation_times(self, members):
        created_at = {}
        for exam_id in members:
            exam = self.store.get_exam(exam_id) or {}
            created_at[exam_id] = to_timestamp(exam.get('createdAt'))
        return created_at

    def _remove_exam(self, outcome):
        try:
            self.store.remove_exam_id_from_patient(outcome.patient_id, outcome.exam_id)
        except RecordStoreError as e:
            # Deleting now would leave the patient listing a missing exam
            outcome.error = f"detach failed: {e}"
            logger.error(f"Could not detach exam {outcome.exam_id} from patient {outcome.patient_id}, "
                         f"skipping delete: {e}")
            return
        outcome.state = RemovalState.DETACH_DONE

        try:
            self.store.delete_exam(outcome.exam_id)
        except RecordStoreError as e:
            outcome.error = f"delete failed: {e}"
            logger.error(f"Could not delete exam {outcome.exam_id}: {e}")
            return
        outcome.state = RemovalState.DELETE_DONE
        logger.info(f"Removed exam {outcome.exam_id} (patient {outcome.patient_id}, "
                    f"date {outcome.exam_date}, kept {outcome.survivor_id})")

    def process_group(self, group):
        """
        Remove every exam of a duplicate group except the selected survivor.

        A store error while reading the members' creation times skips the
        group: it is recorded as a single failed outcome with no exam id and
        nothing in the group is written.

        Parameters:
        -----------
        group : DuplicateGroup
            Group returned by the store

        Returns:
        --------
        list
            RemovalOutcome objects, one per exam planned for removal
        """
        created_at = {}
        if self.policy in TIMESTAMP_POLICIES:
            try:
                created_at = self._creation_times(group.members)
            except RecordStoreError as e:
                logger.error(f"Could not read exams of patient {group.patient_id} on {group.exam_date}, "
                             f"skipping group: {e}")
                return [RemovalOutcome(
                    patient_id=group.patient_id,
                    exam_date=group.exam_date,
                    exam_id=None,
                    survivor_id=None,
                    group_size=group.count,
                    error=f"lookup failed: {e}",
                )]
        survivor, to_remove = plan_removals(group.members, created_at, self.policy)

        outcomes = []
        for exam_id in to_remove:
            outcome = RemovalOutcome(
                patient_id=group.patient_id,
                exam_date=group.exam_date,
                exam_id=exam_id,
                survivor_id=survivor,
                group_size=group.count,
            )
            if self.dry_run:
                logger.info(f"[dry run] Would remove exam {exam_id} (patient {group.patient_id}, "
                            f"date {group.exam_date}, keep {survivor})")
            else:
                self._remove_exam(outcome)
            outcomes.append(outcome)
        return outcomes

    def run(self):
        """
        Run one deduplication pass over the whole store.

        Groups are processed in store order, pausing ``delay`` seconds between
        consecutive groups (there is no pause before the first). Store errors
        inside a group are recorded on the report and the run moves on. A failed
        grouping query or an unexpected error ends the run early and leaves
        ``state`` at FAILED.

        Returns:
        --------
        DeduplicationReport
            Groups found and the outcome of every planned removal
        """
        start_time = time.time()
        logger.info("Starting exam deduplication")
        logger.info(f"Configuration: policy={self.policy}, delay={self.delay}s, dry_run={self.dry_run}")

        report = DeduplicationReport(dry_run=self.dry_run)
        groups = self.find_duplicate_groups()
        report.groups_found = len(groups)

        self.state = RunState.PROCESSING
        try:
            for i, group in enumerate(groups):
                if i and self.delay:
                    time.sleep(self.delay)
                report.outcomes.extend(self.process_group(group))
        except Exception:
            self.state = RunState.FAILED
            logger.exception("Deduplication aborted while processing groups")
            raise

        self.state = RunState.IDLE
        report.elapsed = time.time() - start_time
        self.report = report

        logger.info(f"Deduplication completed in {report.elapsed:.2f} seconds")
        logger.info(f"Removed {report.exams_removed} exams from {report.groups_found} groups "
                    f"({report.failures} failures)")
        return report

    def export_results(self, filename=None):
        """
        Export the last run's removal outcomes to a CSV file.

        Parameters:
        -----------
        filename : str, optional
            Name of the output file. If None, a timestamped filename will be used.

        Returns:
        --------
        str
            Path to the saved file
        """
        if self.report is None or not self.report.outcomes:
            logger.warning("No removals to export")
            return None

        if filename is None:
            timestamp = time.strftime("%Y%m%d-%H%M%S")
            filename = f"exam_duplicates_{timestamp}.csv"

        self.output_dir.mkdir(exist_ok=True, parents=True)
        return save_results(self.report, self.output_dir / filename)

    def visualize_results(self, max_patients=20):
        """
        Chart the duplicates removed in the last run.

        Returns:
        --------
        dict
            Dictionary with paths to visualization files
        """
        if self.report is None or not self.report.outcomes:
            logger.warning("No removals to visualize")
            return None

        logger.info("Generating visualizations")
        records = self.report.as_records()
        return {
            'per_patient': plot_duplicates_per_patient(records, self.output_dir, max_patients=max_patients),
            'group_sizes': plot_group_sizes(records, self.output_dir),
        }

    def run_pipeline(self, export=True, visualize=True):
        """
        Run deduplication, then export and chart the results.

        Returns:
        --------
        dict
            Report plus output paths
        """
        report = self.run()
        csv_path = self.export_results() if export else None
        viz_paths = self.visualize_results() if visualize else None
        return {
            'report': report,
            'csv_output': csv_path,
            'visualizations': viz_paths,
        }
