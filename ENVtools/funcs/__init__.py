"""
ENVtools analysis functions.
"""
