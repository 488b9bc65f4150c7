"""MedSync - offline-first synchronization engine for patient-care records."""

__version__ = "0.1.0"
