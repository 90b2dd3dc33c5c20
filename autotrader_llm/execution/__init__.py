"""Brokerage access and order execution"""
