#!/usr/bin/env python3
"""
Exam Deduplicator - Command Line Runner

This script provides a command-line interface to remove duplicate exams from a
MongoDB record store, or from an offline snapshot of one.
"""

import os
import sys
import argparse
import logging

from exam_deduplicator import ExamDeduplicator
from exam_deduplicator.utils.io import load_snapshot, save_snapshot
from exam_deduplicator.utils.selection import POLICIES
from exam_deduplicator.utils.store import InMemoryRecordStore, MongoRecordStore


def get_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Exam Deduplicator - Remove duplicate exams recorded for the same patient and date"
    )

    # Store connection
    parser.add_argument(
        "--mongo-uri",
        default=os.environ.get("EXAM_DEDUP_MONGO_URI"),
        help="MongoDB connection URI (default: $EXAM_DEDUP_MONGO_URI)"
    )
    parser.add_argument(
        "--database", "-d",
        default=None,
        help="Database name (default: the database named in the URI)"
    )
    parser.add_argument(
        "--patients-collection",
        default="patients",
        help="Patient collection name (default: patients)"
    )
    parser.add_argument(
        "--exams-collection",
        default="exams",
        help="Exam collection name (default: exams)"
    )
    parser.add_argument(
        "--timeout-ms",
        type=int,
        default=5000,
        help="Timeout for every MongoDB call in milliseconds (default: 5000)"
    )

    # Offline snapshot
    parser.add_argument(
        "--patients-file", "-p",
        help="Patients snapshot file (parquet, csv or json) instead of MongoDB"
    )
    parser.add_argument(
        "--exams-file", "-e",
        help="Exams snapshot file (parquet, csv or json) instead of MongoDB"
    )

    # Run options
    parser.add_argument(
        "--delay-ms",
        type=int,
        default=100,
        help="Pause between duplicate groups in milliseconds (default: 100)"
    )
    parser.add_argument(
        "--policy",
        choices=sorted(POLICIES),
        default="earliest_created",
        help="Which exam of a duplicate group to keep (default: earliest_created)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report planned removals without modifying the store"
    )
    parser.add_argument(
        "--output", "-o",
        default="output",
        help="Directory to save output files (default: output)"
    )
    parser.add_argument(
        "--no-visualization",
        action="store_true",
        help="Disable visualization generation"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args(argv)
    offline = args.patients_file or args.exams_file
    if offline and not (args.patients_file and args.exams_file):
        parser.error("--patients-file and --exams-file must be given together")
    if not offline and not args.mongo_uri:
        parser.error("either --mongo-uri (or EXAM_DEDUP_MONGO_URI) or snapshot files are required")
    return args


def open_store(args):
    if args.patients_file:
        patients_df, exams_df = load_snapshot(args.patients_file, args.exams_file)
        return InMemoryRecordStore(patients_df, exams_df)
    return MongoRecordStore.connect(
        args.mongo_uri,
        database=args.database,
        timeout_ms=args.timeout_ms,
        patients_collection=args.patients_collection,
        exams_collection=args.exams_collection,
    )


def main(argv=None):
    """Main execution function"""
    args = get_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger('exam_deduplication')
    logger.setLevel(log_level)

    logger.info("Exam Deduplicator - Starting with configuration:")
    logger.info(f"- Store: {'snapshot ' + args.patients_file if args.patients_file else 'MongoDB'}")
    logger.info(f"- Output directory: {args.output}")
    logger.info(f"- Delay: {args.delay_ms} ms")
    logger.info(f"- Policy: {args.policy}")
    logger.info(f"- Dry run: {'Yes' if args.dry_run else 'No'}")
    logger.info(f"- Visualization: {'Disabled' if args.no_visualization else 'Enabled'}")

    try:
        with open_store(args) as store:
            deduplicator = ExamDeduplicator(
                store,
                delay=args.delay_ms / 1000.0,
                policy=args.policy,
                dry_run=args.dry_run,
                output_dir=args.output
            )

            results = deduplicator.run_pipeline(visualize=not args.no_visualization)

            if args.patients_file and not args.dry_run:
                save_snapshot(store, args.output)

        report = results['report']
        logger.info("Deduplication completed successfully!")
        logger.info(f"Found {report.groups_found} duplicate groups, removed {report.exams_removed} exams")
        if results['csv_output']:
            logger.info(f"Results saved to {results['csv_output']}")

        if results['visualizations']:
            for viz_type, path in results['visualizations'].items():
                logger.info(f"{viz_type.capitalize()} visualization saved to {path}")

        return 0

    except Exception as e:
        logger.error(f"Error during execution: {str(e)}", exc_info=args.verbose)
        return 1


if __name__ == "__main__":
    sys.exit(main())
