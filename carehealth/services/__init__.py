"""Delivery services"""
