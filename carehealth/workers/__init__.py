"""Background workers"""
