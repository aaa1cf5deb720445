"""Distribution - signal kinds, sinks and the per-subject fan-out"""
