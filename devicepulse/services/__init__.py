"""
DevicePulse collaborators.

Components:
- weather_client: OpenWeatherMap lookup with neutral fallback
- alert_cooldown: duplicate alert suppression
- traffic: mock telemetry generator and the APScheduler traffic simulator
"""
