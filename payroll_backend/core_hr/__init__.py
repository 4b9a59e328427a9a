"""Core HR module — Employee, Department, Location master data read by payroll."""

from payroll_backend.core_hr.models import Department, Employee, Location

__all__ = ["Employee", "Department", "Location"]
