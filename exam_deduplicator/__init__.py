"""
Exam Deduplicator Package

A package for removing exams recorded more than once for the same patient on
the same date from a diabetic retinopathy screening record store.
"""

__version__ = '0.1.0'

from .deduplicator import ExamDeduplicator, DeduplicationReport, RunState

__all__ = ['ExamDeduplicator', 'DeduplicationReport', 'RunState']
