"""Headphone fleet simulator and stereo dashboard over pluggable pub/sub brokers.

The project wires three kinds of components through one broker contract:
- a broker (in-process, MQTT or Redis) implementing publish/subscribe
- a headphone event generator simulating N devices
- a stereo dashboard folding the event stream into per-device state

See `app.py` for the command line entrypoint.
"""
