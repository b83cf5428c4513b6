"""Reusable patterns shared by the library vertical.

Each module is a self-contained building block: a pure rules engine with a
short-circuiting pipeline, an enum state machine for loan status, a generic
async repository, and frozen-dataclass configuration.
"""
