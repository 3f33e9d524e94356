"""
PulseMap - live nightlife busyness heat map service.
"""
