"""Appointments domain - booking, rescheduling and cancellation"""
