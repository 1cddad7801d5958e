"""
DevicePulse Prediction Engine.

Components:
- prediction: anomaly history + trend + weather → failure probability and ETA
"""
