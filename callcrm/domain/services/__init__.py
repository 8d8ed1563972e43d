"""Domain services: normalization, correlation, fan-out and the call session state machine"""
