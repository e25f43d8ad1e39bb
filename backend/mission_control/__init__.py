"""
Mission Control backend package.
"""
