"""CareHealth booking and notification core"""
