"""
rns_mavlink - MAVLink telemetry over Reticulum links

Bridges a serial port (aircraft) or UDP socket (ground station) to one peer
across a Reticulum mesh, giving the telemetry application a point-to-point
byte circuit.
"""

__version__ = "0.1.0"
