"""First-instance T2D drug episode cohort with biomarker response and risk score features."""

__version__ = "0.1.0"
