"""Deployment reporting."""

from reporting.report import DeploymentReport, PhaseResult, serializable_context

__all__ = ['DeploymentReport', 'PhaseResult', 'serializable_context']
