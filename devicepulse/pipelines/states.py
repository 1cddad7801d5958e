"""
Monitoring cycle states.

IDLE → VALIDATING → FILTERING → DELEGATED_ANOMALY_CHECK
     → {TEMP_CHECK ‖ HUMIDITY_CHECK} → JOINING → SCORED
     → [PREDICTING → {HISTORY_FETCH ‖ WEATHER_FETCH} → JOINING → PREDICTED]
     → PERSISTED → IDLE

Validation failure → REJECTED (terminal).
"""

from enum import StrEnum

from devicepulse.orchestration.states import StateMachine


class CycleState(StrEnum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    FILTERING = "FILTERING"
    DELEGATED_ANOMALY_CHECK = "DELEGATED_ANOMALY_CHECK"
    TEMP_CHECK = "TEMP_CHECK"
    HUMIDITY_CHECK = "HUMIDITY_CHECK"
    JOINING = "JOINING"
    SCORED = "SCORED"
    PREDICTING = "PREDICTING"
    HISTORY_FETCH = "HISTORY_FETCH"
    WEATHER_FETCH = "WEATHER_FETCH"
    PREDICTED = "PREDICTED"
    PERSISTED = "PERSISTED"
    REJECTED = "REJECTED"


S = CycleState

MONITORING_CYCLE = StateMachine(
    initial=S.IDLE,
    rejected=S.REJECTED,
    transitions={
        S.IDLE: frozenset({S.VALIDATING, S.PREDICTING}),
        S.VALIDATING: frozenset({S.FILTERING, S.REJECTED}),
        S.FILTERING: frozenset({S.DELEGATED_ANOMALY_CHECK, S.REJECTED}),
        S.DELEGATED_ANOMALY_CHECK: frozenset({S.TEMP_CHECK, S.HUMIDITY_CHECK, S.IDLE}),
        S.TEMP_CHECK: frozenset({S.JOINING}),
        S.HUMIDITY_CHECK: frozenset({S.JOINING}),
        S.JOINING: frozenset({S.SCORED, S.PREDICTED}),
        S.SCORED: frozenset({S.PERSISTED, S.PREDICTING}),
        S.PREDICTING: frozenset({S.HISTORY_FETCH, S.WEATHER_FETCH}),
        S.HISTORY_FETCH: frozenset({S.JOINING}),
        S.WEATHER_FETCH: frozenset({S.JOINING}),
        S.PREDICTED: frozenset({S.PERSISTED}),
        S.PERSISTED: frozenset({S.IDLE}),
        S.REJECTED: frozenset(),
    },
)
