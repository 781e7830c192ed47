from setuptools import setup, find_packages

setup(
    name="exam_deduplicator",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pandas>=1.3.0",
        "numpy>=1.20.0",
        "matplotlib>=3.4.0",
        "pyarrow>=6.0.0",  # For parquet support
        "pymongo>=4.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "exam-deduplicator=exam_deduplicator.run:main",
        ],
    },
    description="A package for removing duplicate eye-screening exams recorded for the same patient and date",
    keywords="diabetic retinopathy, screening, exam deduplication, mongodb",
    python_requires=">=3.8",
)
