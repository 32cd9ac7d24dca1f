"""
MQTT Service Core — base framework for long-lived services on an MQTT bus.

A service connects to a broker, registers one handler per topic, dispatches
inbound messages, and publishes typed packets, including LOG records.
"""
