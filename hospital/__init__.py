"""
Hospital Management System

A FastAPI-based system for managing patients and their appointments,
with an appointment lifecycle and SMS reminders scheduled ahead of each visit.
"""

__version__ = "1.0.0"
