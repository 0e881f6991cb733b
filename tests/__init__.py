"""
Test suite for the Hospital Management System.

Contains unit tests for reminder scheduling and the appointment lifecycle,
and API tests for the HTTP layer.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
