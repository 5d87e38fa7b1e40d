"""
Services module for the range receiver.

Business logic around the estimation engine: the live trip manager,
historical calibration data, trip persistence and background jobs.
"""
