"""Notifications domain - lab result and prescription status producers"""
