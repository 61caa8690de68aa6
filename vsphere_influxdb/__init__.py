"""
Send vSphere performance metrics to InfluxDB.
"""

__version__ = "1.0.0"
