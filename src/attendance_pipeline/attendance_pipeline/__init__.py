"""Attendance Pipeline package.

Turns biometric-terminal export files into daily attendance records.
Organized by feature modules (registry, mapping, imports, attendance)
with a thin Flask controller layer over service/repository layers.
"""
