"""
Weather Sensor App - Scraped Temperature Telemetry

Responsibilities:
- Refresh the ground-truth temperature for Seoul from a public weather page
  on a slow cadence (APScheduler interval job)
- Recover the value through a selector -> pattern -> structured-data fallback
  chain, degrading to a configured default
- Publish a jittered telemetry value on a fast cadence over MQTT (QoS 1)

Output:
- MQTT message: topic=MQTT_TOPIC, payload={temperature, baseTemperature,
  variation, timestamp, city, source, lastRealUpdate}
"""
